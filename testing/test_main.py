"""Tests for the roleout command line."""

import argparse
import json
import logging

import pytest

from roleout.main import build_parser, main, resolve_ids
from roleout.services.catalog import CharacterSummary
from roleout.services.export import BatchExportError
from roleout.services.png_metadata import extract_metadata


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # setup_logging attaches a stdout handler to the root logger
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)


@pytest.fixture
def png_file(tmp_path, minimal_png):
    path = tmp_path / "card.png"
    path.write_bytes(minimal_png)
    return path


@pytest.fixture
def no_config(tmp_path):
    return ["--config", str(tmp_path / "missing.yaml")]


def test_embed_and_extract(png_file, tmp_path, no_config, capsys):
    out = tmp_path / "out.png"

    assert main(no_config + ["embed", str(png_file), "--json", '{"name": "Nova"}', "-o", str(out)]) == 0
    assert extract_metadata(out.read_bytes(), "chara") == {"name": "Nova"}

    assert main(no_config + ["extract", str(out)]) == 0
    # log lines share stdout with the extracted JSON
    assert '"name": "Nova"' in capsys.readouterr().out


def test_embed_from_file_in_place(png_file, tmp_path, no_config):
    source = tmp_path / "persona.json"
    source.write_text(json.dumps({"name": "Me"}), encoding="utf-8")

    assert main(no_config + ["embed", str(png_file), "-k", "persona", "--json-file", str(source)]) == 0
    assert extract_metadata(png_file.read_bytes(), "persona") == {"name": "Me"}


def test_extract_missing_keyword(png_file, no_config):
    assert main(no_config + ["extract", str(png_file)]) == 1


def test_extract_to_file(png_file, tmp_path, no_config):
    main(no_config + ["embed", str(png_file), "--json", '{"name": "Nova"}'])
    target = tmp_path / "card.json"

    assert main(no_config + ["extract", str(png_file), "-o", str(target)]) == 0
    assert json.loads(target.read_text(encoding="utf-8")) == {"name": "Nova"}


def test_inspect(png_file, no_config, capsys):
    main(no_config + ["embed", str(png_file), "--json", '{"name": "Nova"}'])
    capsys.readouterr()

    assert main(no_config + ["inspect", str(png_file)]) == 0

    output = capsys.readouterr().out
    assert "IHDR" in output
    assert "tEXt keywords: chara" in output
    assert "SillyTavern V1: Nova" in output


def test_invalid_json(png_file, no_config):
    assert main(no_config + ["embed", str(png_file), "--json", "{not json"]) == 1


def test_not_a_png(tmp_path, no_config):
    path = tmp_path / "fake.png"
    path.write_bytes(b"GIF89a")
    assert main(no_config + ["extract", str(path)]) == 1


def test_export_needs_selection(no_config):
    assert main(no_config + ["export", "characters"]) == 1


def test_parser():
    args = build_parser().parse_args(["export", "chats", "1", "2", "--no-character"])

    assert args.kind == "chats"
    assert args.ids == [1, 2]
    assert args.no_character
    assert not args.all


def test_extract_stored_null(png_file, no_config, capsys):
    main(no_config + ["embed", str(png_file), "--json", "null"])
    capsys.readouterr()

    assert main(no_config + ["extract", str(png_file)]) == 0
    assert "null" in capsys.readouterr().out.splitlines()


def lister_of(count):
    async def lister():
        return [CharacterSummary(id=i, name=f"Card {i}", avatar=f"{i}.png") for i in range(count)]
    return lister


@pytest.mark.asyncio
async def test_single_with_all_needs_exactly_one():
    args = argparse.Namespace(all=True, single=True, ids=[])

    with pytest.raises(BatchExportError, match="exactly one id"):
        await resolve_ids(args, lister_of(2))

    assert await resolve_ids(args, lister_of(1)) == [0]


@pytest.mark.asyncio
async def test_all_with_empty_catalog():
    args = argparse.Namespace(all=True, single=True, ids=[])

    with pytest.raises(BatchExportError, match="Nothing to export"):
        await resolve_ids(args, lister_of(0))
