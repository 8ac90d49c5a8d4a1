from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_data(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class GenerateQuestionsRequest(_CamelModel):
    position: str | None = None
    level: str | None = None
    category: str | None = None
    count: int = Field(default=5, ge=1, le=20)
    skills_required: list[str] | None = Field(default=None, alias="skillsRequired")


class AnalyzeAnswerRequest(_CamelModel):
    question: str | None = None
    answer: str | None = None
    expected_skills: list[str] | None = Field(default=None, alias="expectedSkills")


class FeedbackRequest(_CamelModel):
    session_id: str | None = Field(default=None, alias="sessionId")
    transcript: str | list | None = None
    questions: list | None = None
    position: str | None = None


class FollowupRequest(_CamelModel):
    previous_question: str | None = Field(default=None, alias="previousQuestion")
    answer: str | None = None
    context: str | None = None


class ImproveTranscriptionRequest(_CamelModel):
    text: str | None = None
    context: str | None = None
