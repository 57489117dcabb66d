import json
import sys

import pytest
from conftest import output_files, yaml_page

from spacepub.cli import main, publish_all, publish_all_command
from spacepub.config import PublishConfig
from spacepub.pages import CopiedAttachments, copy_attachments, generate_page
from spacepub.render import compile_template

PNG = b"\x89PNG\r\n\x1a\nfake"

PAGE_B = """---
tags: [blog]
---
See [[C]] and [[A]] #draft
![pic](image.png)
![ext](https://example.com/x.png)
"""


def blog_space(make_space, publish_yaml: str = "tags: [blog]\n", **extra):
    files = {
        "PUBLISH.md": yaml_page(publish_yaml),
        "A.md": "Page A",
        "B.md": PAGE_B,
        "image.png": PNG,
    }
    files.update(extra)
    return make_space(files)


def test_tag_scenario_writes_only_selected_page(make_space, tmp_path):
    space = blog_space(make_space)
    result = publish_all(space)

    assert result.published == ["B"]
    assert sorted(output_files(tmp_path)) == ["B.md", "B/index.html", "image.png", "index.json"]

    mirror = (tmp_path / "_public" / "B.md").read_text(encoding="utf-8")
    assert "See _C_ and _A_" in mirror
    assert "#draft" not in mirror
    assert "[[C]]" not in mirror
    assert (tmp_path / "_public" / "image.png").read_bytes() == PNG


def test_html_page_is_rendered_from_the_original_tree(make_space, tmp_path):
    publish_all(blog_space(make_space))
    html_text = (tmp_path / "_public" / "B" / "index.html").read_text(encoding="utf-8")
    assert 'src="/image.png"' in html_text
    assert 'src="https://example.com/x.png"' in html_text
    assert 'href="/C"' in html_text
    assert "<title>B</title>" in html_text


def test_external_attachment_is_not_copied(make_space, tmp_path):
    publish_all(blog_space(make_space))
    assert not (tmp_path / "_public" / "https:").exists()
    assert "x.png" not in " ".join(output_files(tmp_path))


def test_manifest_lists_raw_assets_only(make_space, tmp_path):
    result = publish_all(blog_space(make_space, "tags: [blog]\nindexPage: A\n"))
    manifest = json.loads((tmp_path / "_public" / "index.json").read_text(encoding="utf-8"))

    assert manifest == result.manifest
    assert [entry["name"] for entry in manifest] == ["B.md", "image.png", "index.md"]
    assert all(entry["contentType"] != "text/html" for entry in manifest)
    assert all(entry["perm"] == "ro" for entry in manifest)
    image = next(entry for entry in manifest if entry["name"] == "image.png")
    assert image["size"] == len(PNG)
    assert image["contentType"] == "image/png"
    assert (tmp_path / "_public" / "index.json").read_text(encoding="utf-8").startswith('[\n  {\n    "name"')


def test_manifest_can_be_disabled(make_space, tmp_path):
    result = publish_all(blog_space(make_space, "tags: [blog]\ngenerateIndexJson: false\n"))
    assert result.manifest == []
    assert "index.json" not in output_files(tmp_path)


def test_two_runs_produce_identical_output(make_space, tmp_path):
    space = blog_space(make_space, "tags: [blog]\nindexPage: A\n")
    publish_all(space)
    first = output_files(tmp_path)
    publish_all(space)
    assert output_files(tmp_path) == first


def test_stale_output_is_removed(make_space, tmp_path):
    space = blog_space(
        make_space,
        **{"_public/Old/index.html": "<p>old</p>", "_public/Old.md": "old", "_public/junk/x.bin": b"x"},
    )
    publish_all(space)
    files = output_files(tmp_path)
    assert "Old.md" not in files
    assert "Old/index.html" not in files
    assert not (tmp_path / "_public" / "Old").exists()
    assert not (tmp_path / "_public" / "junk").exists()


def test_index_page_uses_published_set(make_space, tmp_path):
    space = blog_space(make_space, "tags: [blog]\nindexPage: Home\n", **{"Home.md": "Start at [[B]] not [[A]]"})
    result = publish_all(space)
    assert result.published == ["B"]
    files = output_files(tmp_path)
    assert files["index.md"] == b"Start at [[B]] not _A_"
    assert "index.html" in files
    assert "Home.md" not in files


def test_publish_all_config_publishes_every_page(make_space, tmp_path):
    result = publish_all(blog_space(make_space, "publishAll: true\n"))
    assert result.published == ["A", "B", "PUBLISH"]
    mirror = (tmp_path / "_public" / "B.md").read_text(encoding="utf-8")
    assert "[[A]]" in mirror
    assert "_C_" in mirror


def test_empty_selection_still_completes(make_space, tmp_path):
    space = make_space({"A.md": "nothing to see"})
    result = publish_all(space)
    assert result.published == []
    assert output_files(tmp_path) == {"index.json": b"[]"}


def test_missing_attachment_is_skipped(make_space, tmp_path, capsys):
    space = make_space({"P.md": "---\n$share: pub\n---\n![gone](missing.png) ![ok](ok.png)\n", "ok.png": b"ok"})
    publish_all(space)
    assert "Error reading attachment missing.png" in capsys.readouterr().err
    files = output_files(tmp_path)
    assert files["ok.png"] == b"ok"
    assert "P/index.html" in files


def test_attachment_outside_space_is_skipped(make_space, tmp_path, capsys):
    space = make_space({"P.md": "---\n$share: pub\n---\n![x](../../etc/passwd)\n"})
    publish_all(space)
    assert "Error reading attachment ../../etc/passwd" in capsys.readouterr().err


def test_linked_page_source_is_not_copied_over_its_mirror(make_space, tmp_path, capsys):
    space = make_space(
        {
            "A.md": "---\n$share: pub\n---\npublic %%secret note%% text\n",
            "Z.md": "---\n$share: pub\n---\nsee [A](A.md) and [again](./A.md)\n",
        }
    )
    result = publish_all(space)
    assert result.published == ["A", "Z"]
    mirror = (tmp_path / "_public" / "A.md").read_text(encoding="utf-8")
    assert "secret note" not in mirror
    assert "%%" not in mirror
    assert "public" in mirror
    assert "Skipping page link A.md" in capsys.readouterr().err


def test_page_with_byte_order_mark_hides_front_matter(make_space, tmp_path):
    space = make_space({"P.md": "\ufeff---\n$share: pub\ntitle: hidden-meta\n---\nbody"})
    assert publish_all(space).published == ["P"]
    html_text = (tmp_path / "_public" / "P" / "index.html").read_text(encoding="utf-8")
    assert "hidden-meta" not in html_text
    assert "body" in html_text


def test_undecodable_page_does_not_abort_run(make_space, tmp_path, capsys):
    space = make_space({"P.md": "---\n$share: pub\n---\nbody", "junk.md": b"\xff\xfe\x00bad"})
    assert publish_all(space).published == ["P"]
    assert "P/index.html" in output_files(tmp_path)
    assert "Skipping unreadable page junk.md" in capsys.readouterr().err


def test_shared_attachment_is_written_once_per_run(make_space, tmp_path, monkeypatch):
    space = make_space(
        {
            "P.md": "---\n$share: pub\n---\n![a](image.png) ![b](/image.png)\n",
            "Q.md": "---\n$share: pub\n---\n![c](image.png)\n",
            "R.md": "---\n$share: pub\n---\n![d](image.png)\n",
            "image.png": PNG,
        }
    )
    writes = []
    write_attachment = space.write_attachment

    def record(name, data, last_modified=None):
        writes.append(name)
        return write_attachment(name, data, last_modified=last_modified)

    monkeypatch.setattr(space, "write_attachment", record)
    publish_all(space, workers=4)
    assert writes.count("_public/image.png") == 1
    assert (tmp_path / "_public" / "image.png").read_bytes() == PNG


def test_copy_attachments_skips_claimed_targets(make_space, tmp_path, capsys):
    space = make_space({"image.png": PNG, "doc.txt": b"doc"})
    copied = CopiedAttachments()
    copy_attachments(space, ["image.png"], "_public", copied)
    copy_attachments(space, ["image.png", "doc.txt"], "_public", copied)
    out = capsys.readouterr().out
    assert out.count("Writing _public/image.png") == 1
    assert "Writing _public/doc.txt" in out
    assert output_files(tmp_path) == {"image.png": PNG, "doc.txt": b"doc"}


def test_custom_template_page(make_space, tmp_path):
    space = blog_space(
        make_space,
        "tags: [blog]\ntemplate: Tmpl\ntitle: Site\n",
        **{"Tmpl.md": "```html\n<html>{{ pageName }}|{{ config.title }}|{{ body }}</html>\n```\n"},
    )
    publish_all(space)
    html_text = (tmp_path / "_public" / "B" / "index.html").read_text(encoding="utf-8")
    assert html_text.startswith("<html>B|Site|<p>")


def test_missing_template_page_is_fatal(make_space):
    space = blog_space(make_space, "tags: [blog]\ntemplate: Nowhere\n")
    with pytest.raises(FileNotFoundError):
        publish_all(space)


def test_unreadable_page_is_fatal(make_space):
    space = make_space({})
    with pytest.raises(FileNotFoundError):
        generate_page(
            space,
            "Ghost",
            "_public/Ghost/index.html",
            "_public/Ghost.md",
            frozenset({"Ghost"}),
            PublishConfig(),
            "_public",
            compile_template("{{ body }}"),
        )


def test_page_disappearing_after_selection_aborts_run(make_space, monkeypatch):
    space = blog_space(make_space)
    read_page = space.read_page

    def vanish(name):
        if name == "B":
            raise FileNotFoundError(f"Page not found: {name}")
        return read_page(name)

    monkeypatch.setattr(space, "read_page", vanish)
    with pytest.raises(FileNotFoundError):
        publish_all(space)


def test_thread_pool_output_matches_serial(make_space, tmp_path):
    space = blog_space(make_space, "publishAll: true\n")
    publish_all(space)
    serial = output_files(tmp_path)
    publish_all(space, workers=4)
    assert output_files(tmp_path) == serial


def test_refuses_space_root_as_output(make_space):
    with pytest.raises(ValueError):
        publish_all(make_space({}), dest_dir="/")


def test_command_sends_notifications(make_space):
    messages = []
    publish_all_command(blog_space(make_space), notify=messages.append)
    assert messages == ["Publishing...", "Done!"]


def test_main_publishes_space(make_space, tmp_path, monkeypatch, capsys):
    blog_space(make_space)
    monkeypatch.setattr(
        sys,
        "argv",
        ["spacepub", "--space", str(tmp_path), "--config", str(tmp_path / "none.toml"), "--output", "site"],
    )
    main()
    assert (tmp_path / "site" / "B" / "index.html").exists()
    assert "Publish completed" in capsys.readouterr().out


def test_main_reports_fatal_errors(make_space, tmp_path, monkeypatch, capsys):
    blog_space(make_space, "tags: [blog]\ntemplate: Nowhere\n")
    monkeypatch.setattr(sys, "argv", ["spacepub", "--space", str(tmp_path), "--config", str(tmp_path / "none.toml")])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 1
    assert "Publish failed" in capsys.readouterr().err
