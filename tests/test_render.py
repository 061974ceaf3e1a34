from pathlib import Path
import pytest
import numpy as np
import buddhabrot as bb
from tools import render as render_cli


def _read_ppm(path):
    tokens = path.read_text().split()
    assert tokens[0] == "P3"
    w, h, maxval = int(tokens[1]), int(tokens[2]), int(tokens[3])
    return w, h, maxval, np.array(tokens[4:], dtype=int)


def test_render_writes_full_image(tmp_path):
    out = tmp_path / "bb.ppm"
    counts = render_cli.render(size=32, n_threads=2, n_points=600, max_iter=20,
                               mask_max_iter=50, n_dilations=1, p_uniform=0.5,
                               palette="viridis", output=out, seed=1,
                               progress=False, verbose=False)

    w, h, maxval, values = _read_ppm(out)
    assert (w, h, maxval) == (32, 32, 255)
    assert len(values) == 32 * 32 * 3
    assert values.min() >= 0 and values.max() <= 255
    assert counts.sum() > 0


def test_render_is_reproducible_with_seed(tmp_path):
    kwargs = dict(size=24, n_threads=2, n_points=400, max_iter=15,
                  mask_max_iter=40, p_uniform=0.3, seed=11,
                  progress=False, verbose=False)
    a = render_cli.render(output=tmp_path / "a.ppm", **kwargs)
    b = render_cli.render(output=tmp_path / "b.ppm", **kwargs)
    assert np.array_equal(a, b)
    assert (tmp_path / "a.ppm").read_text() == (tmp_path / "b.ppm").read_text()


def test_unknown_palette_fails_before_sampling(tmp_path, monkeypatch):
    def _boom(*args, **kwargs):
        raise AssertionError("sampling should not start")

    monkeypatch.setattr(bb, "sample_buddhabrot", _boom)
    monkeypatch.setattr(bb, "find_good_points", _boom)
    with pytest.raises(ValueError, match="Unknown palette"):
        render_cli.render(size=16, palette="nope", output=tmp_path / "x.ppm",
                          verbose=False)
    assert not (tmp_path / "x.ppm").exists()


def test_cli_run(tmp_path, capsys):
    out = tmp_path / "cli.ppm"
    code = render_cli.main(["run", "--size", "16", "--threads", "2",
                            "--points", "300", "--max-iter", "10",
                            "--mask-iter", "30", "--p-uniform", "0.5",
                            "--seed", "3", "--no-progress", "-o", str(out)])
    assert code == 0
    assert out.exists()
    assert "Image saved" in capsys.readouterr().out


def test_cli_reports_bad_input(tmp_path, capsys):
    code = render_cli.main(["run", "--size", "16", "--threads", "0",
                            "--points", "10", "--no-progress",
                            "-o", str(tmp_path / "z.ppm")])
    assert code == 1
    assert "error:" in capsys.readouterr().err


def test_cli_lists_palettes(capsys):
    assert render_cli.main(["palettes"]) == 0
    out = capsys.readouterr().out
    assert "viridis" in out and "(default)" in out


def test_cli_rejects_unknown_palette_choice():
    with pytest.raises(SystemExit):
        render_cli.main(["run", "--palette", "rainbow"])


def test_only_the_core_module_is_installed():
    """The generic `tools` directory must not be installed as a top-level package."""
    tomllib = pytest.importorskip("tomllib")
    with open(Path(render_cli.ROOT) / "pyproject.toml", "rb") as f:
        config = tomllib.load(f)
    setuptools_cfg = config["tool"]["setuptools"]
    assert setuptools_cfg.get("py-modules") == ["buddhabrot"]
    assert "tools" not in setuptools_cfg.get("packages", [])
    assert "scripts" not in config["project"], "no console script should be declared"
