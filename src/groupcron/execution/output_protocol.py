"""Result frames exchanged with the agent container over stdout.

The agent prints each result as a JSON object on the lines between a start
and an end marker. Everything else it prints is log noise.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

FRAME_START = "---GROUPCRON_OUTPUT_START---"
FRAME_END = "---GROUPCRON_OUTPUT_END---"
MAX_ERROR_EXCERPT = 200


class ContainerOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["success", "error"] = "success"
    result: str | None = None
    new_session_id: str | None = Field(default=None, alias="newSessionId")
    error: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _only_error_is_failure(cls, value: object) -> str:
        return "error" if value == "error" else "success"


def encode_frame(output: ContainerOutput) -> str:
    """Render an output the way the agent prints it."""
    body = output.model_dump_json(by_alias=True, exclude_none=True)
    return f"{FRAME_START}\n{body}\n{FRAME_END}\n"


def decode_frame(body: str) -> ContainerOutput:
    try:
        return ContainerOutput.model_validate_json(body)
    except ValidationError:
        return ContainerOutput(status="error", error=f"Failed to parse output: {body[:MAX_ERROR_EXCERPT]}")


class FrameDecoder:
    """Line-fed decoder; yields one ContainerOutput per closed frame."""

    def __init__(self) -> None:
        # None while between frames
        self._lines: list[str] | None = None

    @property
    def in_frame(self) -> bool:
        return self._lines is not None

    def feed(self, line: str) -> ContainerOutput | None:
        line = line.rstrip("\r\n")
        if line == FRAME_START:
            self._lines = []
        elif line == FRAME_END and self._lines is not None:
            body, self._lines = "\n".join(self._lines), None
            return decode_frame(body)
        elif self._lines is not None:
            self._lines.append(line)
        return None
