from pathlib import Path

import wp_perms_hardener as wph


def _touch(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("<?php\n", encoding="utf-8")


def test_discovers_sites_up_to_two_levels_deep(tmp_path: Path) -> None:
    base = tmp_path / "sites"
    _touch(base / "alpha.com" / "wp-config.php")
    _touch(base / "clients" / "beta.com" / "wp-config.php")
    _touch(base / "deep" / "er" / "gamma.com" / "wp-config.php")
    (base / "empty.com").mkdir()

    sites = wph.discover_sites(wph.Config(base_paths=(base,)))

    assert sites == [base / "alpha.com", base / "clients" / "beta.com"]


def test_discovery_dedupes_overlapping_bases_in_first_seen_order(tmp_path: Path) -> None:
    outer = tmp_path / "www"
    inner = outer / "html"
    other = tmp_path / "srv"
    _touch(inner / "b.com" / "wp-config.php")
    _touch(outer / "a.com" / "wp-config.php")
    _touch(other / "c.com" / "wp-config.php")

    sites = wph.discover_sites(wph.Config(base_paths=(outer, inner, other, tmp_path / "missing")))

    assert sites == [outer / "a.com", inner / "b.com", other / "c.com"]


def test_discovery_ignores_symlinks_and_directories_named_like_markers(tmp_path: Path) -> None:
    base = tmp_path / "www"
    real = tmp_path / "elsewhere" / "site"
    _touch(real / "wp-config.php")
    base.mkdir()
    (base / "linked").symlink_to(real, target_is_directory=True)
    (base / "odd" / "wp-config.php").mkdir(parents=True)

    assert wph.discover_sites(wph.Config(base_paths=(base,))) == []


def test_resolve_target_by_domain_uses_first_matching_base(tmp_path: Path) -> None:
    first = tmp_path / "one"
    second = tmp_path / "two"
    (second / "example.com").mkdir(parents=True)
    (first / "other.com").mkdir(parents=True)
    config = wph.Config(base_paths=(first, second))

    assert wph.resolve_target("example.com", config) == second / "example.com"
    assert wph.resolve_target("missing.com", config) is None


def test_resolve_target_keeps_absolute_paths(tmp_path: Path) -> None:
    target = tmp_path / "www" / ".." / "www" / "site"
    resolved = wph.resolve_target(str(target), wph.Config(base_paths=()))
    assert resolved == tmp_path / "www" / "site"
