"""Display colors for version tags and channels.

Both color sets are closed enums with an explicit id → member table.  Ids are
what the database stores; looking up an id that is not in the table raises
``UnknownColorId`` instead of producing a half-initialised value.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass

from ore.errors import UnknownColorId


class TagColor(enum.Enum):
    """Background/foreground pairs for version tags."""

    Sponge = (1, "#F7Cf0D", "#333333")
    Forge = (2, "#dfa86a", "#FFFFFF")
    Unstable = (3, "#FFDAB9", "#333333")
    SpongeForge = (4, "#910020", "#FFFFFF")
    SpongeVanilla = (5, "#50C888", "#FFFFFF")
    SpongeCommon = (6, "#5d5dff", "#FFFFFF")
    Lantern = (7, "#4EC1B4", "#FFFFFF")
    Mixin = (8, "#FFA500", "#333333")

    @property
    def id(self) -> int:
        return self.value[0]

    @property
    def background(self) -> str:
        return self.value[1]

    @property
    def foreground(self) -> str:
        return self.value[2]

    @classmethod
    def with_id(cls, color_id: int) -> TagColor:
        """Return the color stored under *color_id*.

        Raises:
            UnknownColorId: If no tag color has that id.
        """
        try:
            return _TAG_COLORS_BY_ID[color_id]
        except KeyError:
            raise UnknownColorId(f"Unknown tag color id: {color_id}") from None


_TAG_COLORS_BY_ID: dict[int, TagColor] = {c.id: c for c in TagColor}


class ChannelColor(enum.Enum):
    """Colors a channel can be displayed in."""

    Purple = (1, "#B400FF")
    Violet = (2, "#C87DFF")
    Magenta = (3, "#E100E1")
    Blue = (4, "#0000FF")
    LightBlue = (5, "#B9F2FF")
    Quartz = (6, "#E7FEFF")
    Aqua = (7, "#0096FF")
    Cyan = (8, "#00E1E1")
    Green = (9, "#00DC00")
    DarkGreen = (10, "#009600")
    Chartreuse = (11, "#7FFF00")
    Amber = (12, "#FFC800")
    Gold = (13, "#CFB53B")
    Orange = (14, "#FF8200")
    Red = (15, "#DC0000")
    Silver = (16, "#C0C0C0")
    Gray = (17, "#A9A9A9")
    Transparent = (18, "transparent")

    @property
    def id(self) -> int:
        return self.value[0]

    @property
    def hex(self) -> str:
        return self.value[1]

    @classmethod
    def with_id(cls, color_id: int) -> ChannelColor:
        """Return the channel color stored under *color_id*.

        Raises:
            UnknownColorId: If no channel color has that id.
        """
        try:
            return _CHANNEL_COLORS_BY_ID[color_id]
        except KeyError:
            raise UnknownColorId(f"Unknown channel color id: {color_id}") from None


_CHANNEL_COLORS_BY_ID: dict[int, ChannelColor] = {c.id: c for c in ChannelColor}


# Platform id → tag color used when rendering a version's platform tags.
_PLATFORM_TAG_COLORS: dict[str, TagColor] = {
    "spongeapi": TagColor.Sponge,
    "spongeforge": TagColor.SpongeForge,
    "spongevanilla": TagColor.SpongeVanilla,
    "sponge": TagColor.SpongeCommon,
    "forge": TagColor.Forge,
    "lantern": TagColor.Lantern,
}


@dataclass(frozen=True)
class DisplayTag:
    """One tag as shown next to a version."""

    name: str
    data: str
    color: TagColor


def version_tags(
    platforms: list[tuple[str, str | None]],
    *,
    uses_mixin: bool,
    stability: str,
) -> list[DisplayTag]:
    """Build the display tags for a version.

    *platforms* is a list of ``(platform_id, version)`` pairs.  Platforms
    without a known color are skipped.  Unstable releases get an
    ``Unstable`` tag and mixin plugins a ``Mixin`` tag.
    """
    tags: list[DisplayTag] = []
    for platform_id, platform_version in platforms:
        color = _PLATFORM_TAG_COLORS.get(platform_id)
        if color is None:
            continue
        tags.append(DisplayTag(name=platform_id, data=platform_version or "", color=color))
    if stability not in ("stable", "beta"):
        tags.append(DisplayTag(name="Unstable", data=stability, color=TagColor.Unstable))
    if uses_mixin:
        tags.append(DisplayTag(name="Mixin", data="", color=TagColor.Mixin))
    return tags
