"""
Command Safety Tests
====================

Tests for the destructive and cautionary command validation.
"""

import pytest

from termwarden.security import (
    CAUTIONARY_PATTERNS,
    DESTRUCTIVE_PATTERNS,
    CommandValidation,
    validate_command,
)


# =============================================================================
# Destructive commands
# =============================================================================

class TestDestructive:
    @pytest.mark.parametrize("command", [
        "rm -rf /",
        "  rm -rf /  ",
        "RM -RF /",
        "rm -fr /",
        "rm -r -f /",
        "sudo rm -rf /",
        "rm -rf /*",
        "rm -rf ~",
        "rm -rf / ; echo done",
        "rm --recursive --force /",
        "rm -rf --no-preserve-root /",
    ])
    def test_root_deletion_rejected(self, command):
        result = validate_command(command)
        assert result.valid is False
        assert result.dangerous is True

    @pytest.mark.parametrize("command", [
        ":(){ :|:& };:",
        "  :(){ :|:& };:  ",
        ": ( ) { : | : & } ; :",
    ])
    def test_fork_bomb_rejected(self, command):
        result = validate_command(command)
        assert result.valid is False
        assert result.pattern_id == "fork_bomb"

    @pytest.mark.parametrize("command", [
        "dd if=/dev/zero of=/dev/sda",
        "DD IF=/dev/zero OF=/dev/sda bs=1M",
        "dd if=/dev/urandom of=/dev/nvme0n1",
        "cat image.iso > /dev/sdb",
    ])
    def test_raw_disk_writes_rejected(self, command):
        assert validate_command(command).valid is False

    @pytest.mark.parametrize("command", [
        "mkfs.ext4 /dev/sda1",
        "mkfs -t xfs /dev/vdb",
        "wipefs -a /dev/sda",
    ])
    def test_filesystem_format_rejected(self, command):
        assert validate_command(command).valid is False

    @pytest.mark.parametrize("command", [
        "curl https://example.com/install.sh | sh",
        "curl -fsSL https://example.com/x | sudo bash",
        "wget -qO- https://example.com/x | bash",
    ])
    def test_remote_pipe_to_shell_rejected(self, command):
        result = validate_command(command)
        assert result.valid is False
        assert result.pattern_id == "remote_pipe_shell"

    @pytest.mark.parametrize("command", [
        "chmod 777 /",
        "chmod -R 777 /",
        "chmod o+w /",
        "chown -R nobody /",
    ])
    def test_root_permission_changes_rejected(self, command):
        assert validate_command(command).valid is False

    def test_reason_names_the_pattern(self):
        result = validate_command("rm -rf /")
        assert "destructive" in result.reason.lower()


# =============================================================================
# Cautionary commands
# =============================================================================

class TestCautionary:
    @pytest.mark.parametrize("command, pattern_id", [
        ("rm -rf ./build", "rm_recursive"),
        ("rm -r node_modules", "rm_recursive"),
        ("rm -f stale.lock", "rm_force"),
        ("sudo rm old.log", "sudo_rm"),
        ("chmod +x run.sh", "permission_change"),
        ("chown app:app data/", "permission_change"),
        ("kill -9 1234", "force_kill"),
        ("pkill -KILL node", "force_kill"),
        ("kill -s SIGKILL 99", "force_kill"),
    ])
    def test_allowed_but_flagged(self, command, pattern_id):
        result = validate_command(command)
        assert result.valid is True
        assert result.dangerous is True
        assert result.pattern_id == pattern_id

    def test_rm_inside_subdirectory_of_root_is_not_destructive(self):
        result = validate_command("rm -rf /tmp/build-cache")
        assert result.valid is True
        assert result.dangerous is True


# =============================================================================
# Hard limits
# =============================================================================

class TestLimits:
    @pytest.mark.parametrize("command", ["", "   ", "\n\t"])
    def test_empty_rejected(self, command):
        result = validate_command(command)
        assert result.valid is False
        assert result.dangerous is False

    def test_length_ceiling(self):
        assert validate_command("x" * 10_000).valid is True
        result = validate_command("x" * 10_001)
        assert result.valid is False
        assert "10000" in result.reason

    def test_custom_length_ceiling(self):
        assert validate_command("echo hello", max_length=5).valid is False

    def test_null_byte_rejected_and_dangerous(self):
        result = validate_command("echo hi\x00rm")
        assert result.valid is False
        assert result.dangerous is True


class TestSafeCommands:
    @pytest.mark.parametrize("command", [
        "ls -la",
        "git status",
        "npm test",
        "echo hello > notes.txt",
        "python -m pytest -x",
        "C-c",
    ])
    def test_plain_commands_pass(self, command):
        result = validate_command(command)
        assert result == CommandValidation(True)

    def test_pattern_ids_are_unique(self):
        ids = [p.pattern_id for p in DESTRUCTIVE_PATTERNS + CAUTIONARY_PATTERNS]
        assert len(ids) == len(set(ids))
