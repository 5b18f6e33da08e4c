"""Pydantic models for Gofile API payloads.

This module defines type-safe models for the remote tree (folders and files),
account payloads and bypass listings.
"""

import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel


def normalize_id(raw: str) -> str:
    """Return the canonical spelling of an id.

    UUID-form ids are lower-cased and hyphenated. Short folder codes are
    returned unchanged; mapping a code to its UUID needs a fetch and is done
    by the tree cache.
    """
    raw = raw.strip()
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return raw


class ApiModel(BaseModel):
    """Base for remote payloads: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class File(ApiModel):
    """A remote file."""

    type: Literal["file"] = "file"
    id: str = Field(..., description="File UUID")
    name: str = Field(..., description="Display name")
    parent_folder: str | None = Field(default=None, description="Parent folder id")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    create_time: int = Field(default=0, description="Creation time (unix seconds)")
    mod_time: int = Field(default=0, description="Modification time (unix seconds)")
    link: str = Field(default="", description="Direct download URL")
    md5: str | None = Field(default=None, description="MD5 checksum if provided")
    mimetype: str | None = None
    can_access: bool = True
    is_frozen: bool = False

    @property
    def is_dir(self) -> bool:
        return False

    @property
    def visible(self) -> bool:
        """Files that cannot be streamed are hidden from the tree."""
        return self.can_access and not self.is_frozen


class Folder(ApiModel):
    """A remote folder, with its children when fetched directly."""

    type: Literal["folder"] = "folder"
    id: str = Field(..., description="Folder UUID")
    code: str = Field(default="", description="Short folder code")
    name: str = ""
    password: bool = Field(default=False, description="Folder is password protected")
    public: bool = False
    is_owner: bool = False
    can_access: bool = True
    create_time: int = 0
    mod_time: int = 0
    total_size: int = 0
    children_count: int = 0
    parent_folder: str | None = None
    children: tuple["RemoteEntry", ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _order_children(cls, data: Any) -> Any:
        # The API returns children as an id-keyed object, optionally with an
        # explicit childrenIds order.
        if not isinstance(data, dict):
            return data
        children = data.get("children")
        if not isinstance(children, dict):
            return data

        order = [i for i in data.get("childrenIds") or [] if i in children]
        seen = set(order)
        order += [i for i in children if i not in seen]

        ordered = []
        for child_id in order:
            child = children[child_id]
            if isinstance(child, dict) and "id" not in child:
                child = {"id": child_id, **child}
            ordered.append(child)

        return {**data, "children": ordered}

    @property
    def is_dir(self) -> bool:
        return True

    @property
    def visible(self) -> bool:
        return True

    @property
    def size(self) -> int:
        return self.total_size

    def without_children(self) -> "Folder":
        return self.model_copy(update={"children": ()})


RemoteEntry = Annotated[Union[File, Folder], Field(discriminator="type")]

Folder.model_rebuild()

ENTRY_ADAPTER: TypeAdapter[File | Folder] = TypeAdapter(RemoteEntry)


class AccountInfo(ApiModel):
    """Account payload from account creation or lookup."""

    id: str
    root_folder: str
    tier: str = "guest"
    token: str
    email: str | None = None


class BypassFile(ApiModel):
    """One entry of a bypass service listing."""

    name: str
    size: int = 0
    link: str
    proxy_link: str
