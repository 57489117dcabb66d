from __future__ import annotations

import json
import sys
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

import yaml

from .content import read_yaml_page
from .utils import parse_bool, parse_list

if TYPE_CHECKING:
    from .space import Space

CONFIG_PAGE = "PUBLISH"

# Keys of the configuration page, camelCase first, mapped to PublishConfig fields.
CONFIG_KEYS = {
    "title": "title",
    "indexPage": "index_page",
    "index_page": "index_page",
    "removeHashtags": "remove_hashtags",
    "remove_hashtags": "remove_hashtags",
    "publishAll": "publish_all",
    "publish_all": "publish_all",
    "tags": "tags",
    "prefixes": "prefixes",
    "template": "template",
    "generateIndexJson": "generate_index_json",
    "generate_index_json": "generate_index_json",
}
BOOL_FIELDS = {"remove_hashtags", "publish_all", "generate_index_json"}
LIST_FIELDS = {"tags", "prefixes"}


@dataclass(frozen=True)
class PublishConfig:
    title: Optional[str] = None
    index_page: Optional[str] = None
    remove_hashtags: bool = True
    publish_all: bool = False
    tags: Optional[tuple[str, ...]] = None
    prefixes: Optional[tuple[str, ...]] = None
    template: Optional[str] = None
    generate_index_json: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping) -> PublishConfig:
        """Shallow-merge ``data`` over the defaults; unknown keys are ignored."""
        values: dict = {}
        for key, value in data.items():
            field_name = CONFIG_KEYS.get(key)
            if field_name is None:
                continue
            if field_name in BOOL_FIELDS:
                values[field_name] = parse_bool(value)
            elif field_name in LIST_FIELDS:
                values[field_name] = tuple(parse_list(value)) if value is not None else None
            else:
                values[field_name] = str(value) if value is not None else None
        return replace(cls(), **values)


def load_publish_config(space: Space, page: str = CONFIG_PAGE) -> PublishConfig:
    try:
        data = read_yaml_page(space, page)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"No {page} page found, using defaults: {exc}", file=sys.stderr)
        return PublishConfig()
    if data is None:
        return PublishConfig()
    if not isinstance(data, dict):
        print(f"{page} config must be a mapping, using defaults.", file=sys.stderr)
        return PublishConfig()
    return PublishConfig.from_mapping(data)


def load_config(path: Path) -> dict:
    if not path.exists():
        return {}
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".toml":
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            print(f"Invalid TOML in config file {path}: {exc}", file=sys.stderr)
            sys.exit(1)
        return data
    if suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            print(f"Invalid YAML in config file {path}: {exc}", file=sys.stderr)
            sys.exit(1)
        if data is None:
            return {}
        if not isinstance(data, dict):
            print(f"YAML config must be a mapping: {path}", file=sys.stderr)
            sys.exit(1)
        return data
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        print(f"Invalid JSON in config file {path}: {exc}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(data, dict):
        print(f"JSON config must be a mapping: {path}", file=sys.stderr)
        sys.exit(1)
    return data
