"""Unit tests for payload fingerprints."""

import hashlib

from stackgate.modules.fingerprint import compute_fingerprints, file_sha256, tracked_files


class TestFingerprints:
    """Tests for compute_fingerprints and tracked_files."""

    def test_sha256_matches_hashlib(self, tmp_path):
        path = tmp_path / "file.yml"
        path.write_bytes(b"- hosts: all\n")

        assert file_sha256(path) == hashlib.sha256(b"- hosts: all\n").hexdigest()

    def test_keys_are_relative_posix_paths(self, project_dir):
        fingerprints = compute_fingerprints(project_dir / "ansible", "playbook.yml", ["roles"])

        assert sorted(fingerprints) == ["playbook.yml", "roles/web/tasks/main.yml"]

    def test_content_change_changes_only_that_file(self, project_dir):
        ansible = project_dir / "ansible"
        before = compute_fingerprints(ansible, "playbook.yml", ["roles"])

        (ansible / "roles" / "web" / "tasks" / "main.yml").write_text("- name: different\n")
        after = compute_fingerprints(ansible, "playbook.yml", ["roles"])

        assert after["playbook.yml"] == before["playbook.yml"]
        assert after["roles/web/tasks/main.yml"] != before["roles/web/tasks/main.yml"]

    def test_skips_vcs_and_cache_directories(self, project_dir):
        ansible = project_dir / "ansible"
        cache = ansible / "roles" / "web" / "__pycache__"
        cache.mkdir()
        (cache / "x.pyc").write_bytes(b"\x00")
        (ansible / "roles" / ".git").mkdir()
        (ansible / "roles" / ".git" / "HEAD").write_text("ref")

        files = tracked_files(ansible, "playbook.yml", ["roles"])

        assert all("__pycache__" not in p.parts and ".git" not in p.parts for p in files)

    def test_missing_playbook_and_roles_are_absent(self, tmp_path):
        assert compute_fingerprints(tmp_path, "playbook.yml", ["roles"]) == {}

    def test_inventory_is_not_tracked(self, project_dir):
        ansible = project_dir / "ansible"
        (ansible / "inventory").mkdir()
        (ansible / "inventory" / "hosts").write_text("[app_servers]\n203.0.113.4\n")

        assert "inventory/hosts" not in compute_fingerprints(ansible, "playbook.yml", ["roles"])
