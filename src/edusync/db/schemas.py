"""Pydantic schemas for the four document collections.

Documents travel as camelCase JSON objects (on disk and over the wire);
the models expose snake_case attributes through aliases. Every write to
the store goes through validate_document(), so read sites can rely on
the stored shape.

Content `data` is a tagged union selected by the document `type`:
- quiz -> QuizData
- text, lesson -> LessonData
- subject, module -> FolderData
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from edusync.errors import ValidationError

# =============================================================================
# CONSTANTS
# =============================================================================

USERS = "users"
PROGRESS = "progress"
CONTENT = "content"
CLASSES = "classes"

COLLECTIONS = (USERS, PROGRESS, CONTENT, CLASSES)

# Current schema version per collection
SCHEMA_VERSIONS: dict[str, int] = {
    USERS: 7,
    CONTENT: 6,
    PROGRESS: 0,
    CLASSES: 3,
}

# Join codes avoid I, O, 0 and 1
JOIN_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH = 6

Role = Literal["student", "teacher"]
Medium = Literal["english", "marathi"]
ContentType = Literal["subject", "module", "text", "lesson", "quiz"]


class SchemaModel(BaseModel):
    """Base for all document shapes: camelCase aliases, extra keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class DocumentModel(SchemaModel):
    """A top-level document with a primary key."""

    id: str = Field(..., min_length=1, max_length=100)


# =============================================================================
# USERS
# =============================================================================


class UserDocument(DocumentModel):
    """A student or teacher profile on this device."""

    name: str
    avatar_id: str
    pin_hash: str = Field(..., min_length=1)
    role: Role
    created_at: int
    class_id: str | None = None
    teacher_class_id: str | None = None
    medium: Medium | None = None
    phone: str | None = None
    school_name: str | None = None
    village_name: str | None = None
    state: str | None = None
    country: str | None = None
    birthdate: str | None = None
    roll_no: str | None = None


# =============================================================================
# PROGRESS
# =============================================================================


class ProgressDocument(DocumentModel):
    """Best result of one user on one level."""

    user_id: str = Field(..., min_length=1, max_length=100)
    level_id: str = Field(..., min_length=1)
    score: int | float
    stars: int = Field(..., ge=0, le=3)
    timestamp: int

    @field_validator("score")
    @classmethod
    def _score_in_range(cls, value: int | float) -> int | float:
        if not 0 <= value <= 100:
            raise ValueError("score must be between 0 and 100")
        return value


# =============================================================================
# CONTENT
# =============================================================================


class QuizQuestion(SchemaModel):
    """A multiple-choice question; correct_answer indexes options."""

    id: str
    text: str
    options: list[str] = Field(default_factory=list)
    correct_answer: int = 0

    @model_validator(mode="after")
    def _answer_within_options(self) -> QuizQuestion:
        if self.options and not 0 <= self.correct_answer < len(self.options):
            raise ValueError(
                f"correctAnswer {self.correct_answer} out of range "
                f"for {len(self.options)} options"
            )
        return self


class QuizData(SchemaModel):
    questions: list[QuizQuestion] = Field(default_factory=list)


class Attachment(SchemaModel):
    """A file carried inline with a lesson."""

    id: str
    name: str
    mime_type: str
    base64: str


class LessonData(SchemaModel):
    """Lesson body: per-language HTML plus inline attachments."""

    content: str | None = None  # legacy single-language body
    translations: dict[str, str] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)


class FolderData(SchemaModel):
    """Free-form metadata for subject/module folders."""


CONTENT_DATA_MODELS: dict[str, type[SchemaModel]] = {
    "quiz": QuizData,
    "text": LessonData,
    "lesson": LessonData,
    "subject": FolderData,
    "module": FolderData,
}


class ContentDocument(DocumentModel):
    """A subject, module, lesson or quiz."""

    type: ContentType
    title: str
    created_at: int
    updated_at: int | None = None
    thumbnail: str | None = None
    description: str | None = None
    class_id: str | None = None
    subject_id: str | None = None
    module_id: str | None = None
    is_homework: bool | None = None
    teacher_id: str | None = None
    medium: Medium | None = None
    data: QuizData | LessonData | FolderData | None = None

    @model_validator(mode="before")
    @classmethod
    def _select_data_variant(cls, values: Any) -> Any:
        """Validate `data` against the variant selected by `type`."""
        if not isinstance(values, dict):
            return values
        data = values.get("data")
        variant = CONTENT_DATA_MODELS.get(values.get("type"))
        if isinstance(data, dict) and variant is not None:
            values = {**values, "data": variant.model_validate(data)}
        return values


# =============================================================================
# CLASSES
# =============================================================================


class ClassDocument(DocumentModel):
    """A teacher's class that students join with a short code."""

    name: str
    teacher_id: str
    created_at: int
    standard: str | None = None
    medium: Medium | None = None
    code: str | None = Field(default=None, min_length=JOIN_CODE_LENGTH, max_length=JOIN_CODE_LENGTH)

    @field_validator("code")
    @classmethod
    def _code_alphabet(cls, value: str | None) -> str | None:
        if value is not None and any(ch not in JOIN_CODE_ALPHABET for ch in value):
            raise ValueError("code contains characters outside the join-code alphabet")
        return value


COLLECTION_MODELS: dict[str, type[DocumentModel]] = {
    USERS: UserDocument,
    PROGRESS: ProgressDocument,
    CONTENT: ContentDocument,
    CLASSES: ClassDocument,
}


# =============================================================================
# VALIDATION
# =============================================================================


def get_model(collection: str) -> type[DocumentModel]:
    """Get the schema model for a collection.

    Raises:
        ValueError: If the collection is unknown
    """
    try:
        return COLLECTION_MODELS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


def validate_document(collection: str, doc: dict[str, Any]) -> dict[str, Any]:
    """Validate a document and return its normalized JSON form.

    Args:
        collection: Collection name
        doc: Raw document (camelCase keys)

    Returns:
        Normalized document with camelCase keys and None values dropped

    Raises:
        ValidationError: If required fields are missing or types mismatch
    """
    model = get_model(collection)
    try:
        validated = model.model_validate(doc)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        doc_id = doc.get("id") if isinstance(doc, dict) else None
        raise ValidationError(collection, errors, doc_id=doc_id) from e

    return validated.model_dump(mode="json", by_alias=True, exclude_none=True)
