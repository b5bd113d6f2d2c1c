from pathlib import Path

from routegen.repo.scanner import scan_python_files


def test_scan_python_files_finds_src_files():
    repo_root = Path(__file__).resolve().parents[1]
    files = scan_python_files(repo_root, max_files=5000)

    target = (repo_root / "src" / "routegen" / "cli.py").resolve()
    assert any(Path(p).resolve() == target for p in files)


def test_scan_is_sorted_and_prunes_ignored(tmp_path: Path):
    for rel in ["b/z.py", "b/a.py", "a.py", "__pycache__/x.py", "out/gen.py", "notes.txt"]:
        p = tmp_path / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text("", encoding="utf-8")

    files = scan_python_files(tmp_path, exclude=frozenset({"out"}))
    rel = [Path(p).relative_to(tmp_path.resolve()).as_posix() for p in files]
    assert rel == ["a.py", "b/a.py", "b/z.py"]
