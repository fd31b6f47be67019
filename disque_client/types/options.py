"""
Command option models.

Options become trailing ``NAME value`` pairs on the wire. ``True`` becomes a
bare flag, ``False`` and ``None`` are omitted. Keys the models do not know are
passed through upper-cased so newer server options stay usable.
"""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from disque_client.protocol.codec import Argument


class CommandOptions(BaseModel):
    """Base for option models that render to command arguments."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @classmethod
    def build(cls, options: "CommandOptions | dict[str, Any] | None" = None, **overrides: Any) -> Self:
        """
        Merge an options object or dict with keyword overrides.

        Args:
            options: Existing options, a plain dict, or None.
            **overrides: Individual options that take precedence.

        Returns:
            A validated options instance.
        """
        if isinstance(options, CommandOptions):
            data = options.model_dump(by_alias=True, exclude_none=True)
        else:
            data = dict(options or {})
        data.update(overrides)
        return cls.model_validate(data)

    def to_args(self) -> list[Argument]:
        """Render the options as ordered command arguments."""
        args: list[Argument] = []
        for name, value in self.model_dump(by_alias=True, exclude_none=True).items():
            if value is False:
                continue
            args.append(name.upper())
            if value is not True:
                args.append(value)
        return args


class AddJobOptions(CommandOptions):
    """Options for ADDJOB."""

    replicate: int | None = None
    delay: int | None = None
    retry: int | None = None
    ttl: int | None = None
    maxlen: int | None = None
    async_: bool | None = Field(default=None, alias="async")


class GetJobOptions(CommandOptions):
    """Options for GETJOB."""

    count: int | None = None
    timeout: int | None = None
    nohang: bool | None = None
    withcounters: bool | None = None
