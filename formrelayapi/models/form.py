import re
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

FieldType = Literal["text", "number", "email", "date", "select", "checkbox", "file"]

# "{epoch_ms}_{random}_" prefix added to uploaded object names
UPLOAD_PREFIX_RE = re.compile(r"^\d+_[a-z0-9]+_")


class FileConstraints(BaseModel):
    maxSize: float = Field(ge=1, le=30)  # MB
    allowedTypes: List[str] = []


class FormField(BaseModel):
    id: str
    type: FieldType
    label: str = Field(min_length=1)
    placeholder: Optional[str] = None
    required: bool = False
    options: Optional[List[str]] = None
    fileConstraints: Optional[FileConstraints] = None

    @field_validator("label")
    @classmethod
    def label_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Label is required")
        return value


class FormIn(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    fields: List[FormField] = Field(min_length=1)
    emailRecipient: EmailStr
    emailSubject: Optional[str] = None


class Form(BaseModel):
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    fields: List[Dict[str, Any]] = []
    email_recipient: str
    email_subject: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FormSummary(Form):
    submissions_count: int = 0


class PublicForm(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    fields: List[Dict[str, Any]] = []


class UploadedFileMeta(BaseModel):
    path: str
    originalFileName: str


class SubmissionIn(BaseModel):
    formId: str = Field(pattern=r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
    data: Dict[str, Any]
    filePaths: List[str] = []
    fileMetadata: Dict[str, List[UploadedFileMeta]] = {}
    language: str = "zh-CN"


Translate = Callable[..., str]


class FieldValue(BaseModel):
    """A submitted value bound to the field definition it answers."""

    kind: ClassVar[str] = "text"

    field: FormField
    raw: Any = None

    def is_missing(self) -> bool:
        return self.raw is None or self.raw == ""

    def display(self, t: Translate, file_metadata: Dict[str, List[UploadedFileMeta]]) -> str:
        if self.raw is None:
            return t("email.notProvided")
        if isinstance(self.raw, list):
            return ", ".join(str(item) for item in self.raw)
        if isinstance(self.raw, bool):
            return "true" if self.raw else "false"
        return str(self.raw)


class TextValue(FieldValue):
    kind: ClassVar[str] = "text"


class EmailValue(FieldValue):
    kind: ClassVar[str] = "email"


class DateValue(FieldValue):
    kind: ClassVar[str] = "date"


class SelectValue(FieldValue):
    kind: ClassVar[str] = "select"


class NumberValue(FieldValue):
    kind: ClassVar[str] = "number"

    @property
    def number(self) -> Optional[float]:
        if self.is_missing() or isinstance(self.raw, bool):
            return None
        try:
            return float(self.raw)
        except (TypeError, ValueError):
            return None


class CheckboxValue(FieldValue):
    kind: ClassVar[str] = "checkbox"

    @property
    def checked(self) -> bool:
        return bool(self.raw)

    def display(self, t, file_metadata) -> str:
        if self.raw is None:
            return t("email.notProvided")
        return t("common.yes") if self.checked else t("common.no")


class FileValue(FieldValue):
    kind: ClassVar[str] = "file"

    @property
    def paths(self) -> List[str]:
        if isinstance(self.raw, list):
            return [str(path) for path in self.raw]
        return []

    def is_missing(self) -> bool:
        return not self.paths

    def display(self, t, file_metadata) -> str:
        if self.raw is None:
            return t("email.notProvided")
        paths = self.paths
        if not paths:
            return t("email.noFiles")
        names = [meta.originalFileName for meta in file_metadata.get(self.field.id, [])]
        if not names:
            names = [UPLOAD_PREFIX_RE.sub("", path.split("/")[-1] or path) for path in paths]
        noun = t("email.attachment") if len(paths) == 1 else t("email.attachments")
        return f"📎 {', '.join(names)} ({len(paths)} {noun})"


VALUE_TYPES = {
    cls.kind: cls
    for cls in (TextValue, NumberValue, EmailValue, DateValue, SelectValue, CheckboxValue, FileValue)
}


def project_values(fields: List[FormField], data: Dict[str, Any]) -> Dict[str, FieldValue]:
    """Bind the raw submission map to typed values, one per form field, in field order."""
    return {
        field.id: VALUE_TYPES[field.type](field=field, raw=data.get(field.id))
        for field in fields
    }


def missing_required_labels(values: Dict[str, FieldValue]) -> List[str]:
    return [v.field.label for v in values.values() if v.field.required and v.is_missing()]
