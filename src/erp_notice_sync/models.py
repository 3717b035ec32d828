from __future__ import annotations

import re
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


_ROLL_NO_RE = re.compile(r"^\d{2}[A-Za-z]{2}\d{5}$")
SECURITY_QUESTION_COUNT = 3


class Credentials(BaseModel):
    """
    Login material for one portal login attempt.

    Accepts either snake_case or the camelCase keys used by the trigger payload
    (`rollNo`, `securityAnswers`).
    """

    model_config = ConfigDict(frozen=True)

    roll_no: str = Field(validation_alias=AliasChoices("roll_no", "rollNo"))
    password: str = Field(min_length=1, repr=False)
    security_answers: dict[str, str] = Field(
        validation_alias=AliasChoices("security_answers", "securityAnswers"),
        repr=False,
    )

    @field_validator("roll_no")
    @classmethod
    def _check_roll_no(cls, value: str) -> str:
        value = (value or "").strip()
        if not _ROLL_NO_RE.match(value):
            raise ValueError("roll_no must look like 23XX10012 (2 digits, 2 letters, 5 digits)")
        return value

    @field_validator("security_answers")
    @classmethod
    def _check_answers(cls, value: dict[str, str]) -> dict[str, str]:
        if len(value) != SECURITY_QUESTION_COUNT:
            raise ValueError(f"security_answers must have exactly {SECURITY_QUESTION_COUNT} entries")
        return value

    def answer_for(self, question: str) -> Optional[str]:
        # Exact match only: answering the wrong question locks accounts.
        return self.security_answers.get(question)


class Notice(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    row_num: int
    id: int
    type: str
    category: str
    company: str
    # Portal-local "DD-MM-YYYY HH:MM"
    notice_at: str
    noticed_by: int
    notice_text: str

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class OtpRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(validation_alias=AliasChoices("otp", "code"))
    created_at: str = Field(default="", validation_alias=AliasChoices("createdAt", "created_at"))

    @field_validator("code", mode="before")
    @classmethod
    def _code_to_text(cls, value: object) -> str:
        # The OTP store keeps codes as integers.
        if value is None:
            raise ValueError("otp missing")
        text = str(value).strip()
        if not text:
            raise ValueError("otp empty")
        return text


class RunRecord(BaseModel):
    run_id: int
    started_at: str
    finished_at: Optional[str] = None
    ok: Optional[bool] = None
    step: Optional[str] = None
    message: Optional[str] = None
    delivered: Optional[int] = None
