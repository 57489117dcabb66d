from __future__ import annotations

from pathlib import Path

import pytest

from spacepub.space import Space


def yaml_page(body: str) -> str:
    return f"```yaml\n{body}```\n"


def output_files(root: Path, dest_dir: str = "_public") -> dict[str, bytes]:
    base = root / dest_dir
    if not base.exists():
        return {}
    return {
        path.relative_to(base).as_posix(): path.read_bytes()
        for path in sorted(base.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def make_space(tmp_path):
    def build(files: dict, ignore: tuple[str, ...] = ("_public",)) -> Space:
        for name, content in files.items():
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return Space(tmp_path, ignore=ignore)

    return build
