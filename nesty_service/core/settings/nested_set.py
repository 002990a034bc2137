"""Nested-set engine settings.

Column names default to the conventional nested-set schema:
`lft` and `rgt` (because `left` and `right` are reserved words in many
databases, including MySQL), `tree_id` and `name`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_nesty_yaml_source

if TYPE_CHECKING:
    from nesty_service.core.database.hierarchy.columns import NestedSetColumns


class NestedSetSettings(BaseSettings):
    """Nested-set column mapping and engine behaviour.

    Environment variables use NESTY_ prefix.
    Example: NESTY_LEFT_COLUMN=lft, NESTY_VERIFY_AFTER_MUTATION=true

    The column names are used only for models without __nested_set_columns__;
    models built on NestedSetMixin keep the mixin's columns.
    """

    # ─────────────────────────────────────────────────────
    # Column mapping
    # ─────────────────────────────────────────────────────
    left_column: str = Field(
        default="lft",
        min_length=1,
        max_length=63,
        description="Attribute holding the left boundary of a node interval.",
    )
    right_column: str = Field(
        default="rgt",
        min_length=1,
        max_length=63,
        description="Attribute holding the right boundary of a node interval.",
    )
    tree_column: str = Field(
        default="tree_id",
        min_length=1,
        max_length=63,
        description="Attribute holding the tree partition identifier.",
    )
    name_column: str = Field(
        default="name",
        min_length=1,
        max_length=63,
        description="Attribute used by path() when no column is given.",
    )

    # ─────────────────────────────────────────────────────
    # Engine behaviour
    # ─────────────────────────────────────────────────────
    verify_after_mutation: bool = Field(
        default=False,
        description=(
            "Run a full invariant check on every touched tree before committing "
            "a structural mutation. Expensive on large trees."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="NESTY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_nesty_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("left_column", "right_column", "tree_column", "name_column")
    @classmethod
    def _validate_identifier(cls, v: str) -> str:
        """Column attributes must be valid Python identifiers."""
        if not v.isidentifier():
            raise ValueError(f"{v!r} is not a valid attribute name")
        return v

    def to_columns(self) -> NestedSetColumns:
        """Build the immutable column mapping handed to the engine."""
        from nesty_service.core.database.hierarchy.columns import NestedSetColumns

        return NestedSetColumns(
            left=self.left_column,
            right=self.right_column,
            tree=self.tree_column,
            name=self.name_column,
        )
