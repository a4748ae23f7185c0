import sys

import pytest

from magistral import main as main_module
from magistral.app import Magistral
from magistral.diskfs import DiskStorage
from magistral.errors import ConfigurationError
from magistral.vfs import VirtualStorage


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setattr("magistral.client.MAGISTRAL_API_KEY", "test-key")


async def test_virtual_workspace_is_seeded_under_home(tmp_path, ctx):
    app = Magistral(home=tmp_path / "home", ctx=ctx)
    assert isinstance(app.storage, VirtualStorage)
    await app.start()
    assert await app.handle_user_input(":files")
    assert ctx.sent == ["/demo.js", "/welcome.md"]
    assert (tmp_path / "home" / "store.json").exists()


async def test_folder_mode_and_commands(tmp_path, ctx):
    folder = tmp_path / "proj"
    folder.mkdir()
    (folder / "index.html").write_text('<script src="app.js"></script>', encoding="utf-8")
    (folder / "app.js").write_text("go()", encoding="utf-8")
    app = Magistral(folder, model="magistral-small-latest", home=tmp_path / "home", ctx=ctx)
    assert isinstance(app.storage, DiskStorage)
    assert app.client.model == "magistral-small-latest"
    await app.start()

    await app.handle_user_input(":open app.js")
    assert ctx.sent[-1] == "go()"
    assert app.editor.path == "/app.js"

    await app.handle_user_input(":model other-model")
    assert app.client.model == "other-model"

    out = tmp_path / "preview.html"
    await app.handle_user_input(f":preview {out}")
    assert out.read_text(encoding="utf-8") == "<script>go()</script>"

    await app.handle_user_input(":open nope.js")
    await app.handle_user_input(":bogus")
    assert len(ctx.errors) == 2
    assert await app.handle_user_input(":quit") is False


async def test_refresh_picks_up_external_files(tmp_path, ctx):
    folder = tmp_path / "proj"
    folder.mkdir()
    app = Magistral(folder, home=tmp_path / "home", ctx=ctx)
    await app.start()
    (folder / "late.txt").write_text("x", encoding="utf-8")
    await app.handle_user_input(":refresh")
    assert ctx.sent[-1] == "Workspace refreshed: 1 file(s)."


def test_httpcalls_directory_enables_dumps(tmp_path, ctx):
    folder = tmp_path / "proj"
    (folder / ".httpcalls").mkdir(parents=True)
    app = Magistral(folder, home=tmp_path / "home", ctx=ctx)
    assert app.client.config.httpcalls_dir == str(folder.resolve() / ".httpcalls")


def test_missing_api_key_is_a_configuration_error(monkeypatch, tmp_path):
    monkeypatch.setattr("magistral.client.MAGISTRAL_API_KEY", "")
    with pytest.raises(ConfigurationError):
        Magistral(home=tmp_path / "home")


def test_cli_help(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["magistral", "--help"])
    main_module.main()
    assert "Usage: magistral" in capsys.readouterr().out


def test_cli_rejects_unknown_option(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["magistral", "--nope"])
    with pytest.raises(SystemExit) as info:
        main_module.main()
    assert info.value.code == 2


def test_cli_rejects_missing_folder(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "argv", ["magistral", "-f", str(tmp_path / "missing")])
    with pytest.raises(SystemExit) as info:
        main_module.main()
    assert info.value.code == 2


async def test_new_and_mkdir_commands(tmp_path, ctx):
    app = Magistral(home=tmp_path / "home", ctx=ctx)
    await app.start()

    await app.handle_user_input(":mkdir /lib")
    assert ctx.sent[-1] == "Folder /lib"
    await app.handle_user_input(":new lib/a.txt")
    assert ctx.sent[-1] == "Created /lib/a.txt"
    assert (await app.storage.read("/lib/a.txt")).content == ""

    await app.handle_user_input(":new /lib/a.txt")
    await app.handle_user_input(":new /missing/b.txt")
    await app.handle_user_input(":mkdir")
    assert ctx.errors == ["Already exists: /lib/a.txt", "Could not create /missing/b.txt", "Usage: :mkdir PATH"]


async def test_new_file_appears_on_disk(tmp_path, ctx):
    folder = tmp_path / "proj"
    folder.mkdir()
    app = Magistral(folder, home=tmp_path / "home", ctx=ctx)
    await app.start()
    await app.handle_user_input(":new src/main.py")
    assert (folder / "src" / "main.py").read_text(encoding="utf-8") == ""
    await app.handle_user_input(":files")
    assert ctx.sent[-1] == "/src/main.py"


async def test_edit_replaces_open_file_content(tmp_path, ctx):
    app = Magistral(home=tmp_path / "home", ctx=ctx)
    await app.start()
    app.editor.autosaver.delay = 0
    await app.handle_user_input(":open /welcome.md")
    await app.handle_user_input(":edit")
    assert app.editing

    for line in ("# Title", "", "  indented body", ":quit", "."):
        assert await app.handle_user_input(line) is True
    assert not app.editing
    assert app.editor.content == "# Title\n\n  indented body\n:quit"

    await app.editor.autosaver.flush()
    assert (await app.storage.read("/welcome.md")).content == "# Title\n\n  indented body\n:quit"


async def test_edit_abort_and_requires_open_file(tmp_path, ctx):
    app = Magistral(home=tmp_path / "home", ctx=ctx)
    await app.start()
    await app.handle_user_input(":edit")
    assert ctx.errors == ["No open file. Use :open PATH first."]
    assert not app.editing

    await app.handle_user_input(":open /demo.js")
    original = app.editor.content
    await app.handle_user_input(":edit")
    await app.handle_user_input("throwaway")
    await app.handle_user_input(":abort")
    assert not app.editing
    assert ctx.sent[-1] == "Edit discarded."
    assert app.editor.content == original
    assert not app.editor.autosaver.pending("/demo.js")
