from typing import Literal

from pydantic import BaseModel


class Requirement(BaseModel):
    type: Literal["skill", "experience", "education", "certification", "language", "other"]
    name: str
    required: bool | None = None
    level: str | None = None
    description: str | None = None


class Responsibility(BaseModel):
    title: str
    description: str | None = None


class Benefit(BaseModel):
    type: str
    description: str | None = None


class Qualification(BaseModel):
    type: Literal["education", "experience", "certification", "skill", "other"]
    value: str
    required: bool | None = None


class Skill(BaseModel):
    name: str
    category: Literal["technical", "soft", "language", "tool", "framework", "other"] | None = None
    required: bool | None = None
    experience: str | None = None


class JobExtractionResult(BaseModel):
    requirements: list[Requirement] | None = None
    responsibilities: list[Responsibility] | None = None
    benefits: list[Benefit] | None = None
    qualifications: list[Qualification] | None = None
    skills: list[Skill] | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    salary_currency: str | None = None
    salary_period: Literal["hourly", "monthly", "yearly"] | None = None
    experience_level: Literal["entry", "mid", "senior", "executive"] | None = None
    education_level: Literal["high-school", "associate", "bachelor", "master", "phd", "none"] | None = None
    work_type: Literal["remote", "hybrid", "on-site"] | None = None
    work_schedule: Literal["full-time", "part-time", "contract", "temporary", "internship"] | None = None

    def structured_text(self) -> str:
        """Flatten the structured fields into the text used for structured embeddings."""
        parts: list[str] = []
        if self.skills:
            parts.append("Skills: " + ", ".join(skill.name for skill in self.skills))
        if self.requirements:
            parts.append(
                "Requirements: " + ". ".join(f"{item.type}: {item.name}" for item in self.requirements)
            )
        if self.qualifications:
            parts.append(
                "Qualifications: " + ". ".join(f"{item.type}: {item.value}" for item in self.qualifications)
            )
        if self.experience_level:
            parts.append(f"Experience Level: {self.experience_level}")
        if self.education_level:
            parts.append(f"Education: {self.education_level}")
        if self.work_type:
            parts.append(f"Work Type: {self.work_type}")
        if self.work_schedule:
            parts.append(f"Schedule: {self.work_schedule}")
        return ". ".join(parts)
