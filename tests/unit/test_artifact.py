"""
Unit tests for checksum and metadata sidecars (koinos_backup/backup/artifact.py).
"""

import hashlib
import shutil
import subprocess
from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from koinos_backup.config import BackupMode
from koinos_backup.errors import (
    BackupError,
    MissingPrerequisiteError,
    VerificationError,
    WarningKind
)
from koinos_backup.backup.artifact import (
    checksum_path,
    finalize_artifact,
    metadata_path,
    read_checksum_line,
    render_metadata,
    verify_checksum,
    write_checksum,
    write_metadata
)


@pytest.fixture
def archive(output_dir):
    """A stand-in archive file; sidecars don't care about its format."""
    path = output_dir / 'koinos-backup_20241020_120000.tar.gz'
    path.write_bytes(b'\x1f\x8b' + b'archive body' * 64)
    return path


class TestChecksum:
    """Test checksum sidecar writing and verification."""

    def test_write_checksum_format(self, archive):
        path = write_checksum(str(archive))

        assert path == f'{archive}.sha256'
        expected = hashlib.sha256(archive.read_bytes()).hexdigest()
        with open(path) as f:
            assert f.read() == f'{expected}  {archive.name}\n'

    def test_write_checksum_missing_archive(self, output_dir):
        with pytest.raises(MissingPrerequisiteError):
            write_checksum(str(output_dir / 'missing.tar.gz'))

    def test_write_checksum_unwritable_sidecar(self, archive):
        (archive.parent / f'{archive.name}.sha256').mkdir()

        with pytest.raises(BackupError, match='Failed to write checksum file'):
            write_checksum(str(archive))

    @pytest.mark.skipif(shutil.which('sha256sum') is None, reason='sha256sum is required')
    def test_checksum_file_accepted_by_sha256sum(self, archive):
        """Test the sidecar works with the standard verification tool."""
        write_checksum(str(archive))

        completed = subprocess.run(
            ['sha256sum', '-c', f'{archive.name}.sha256'],
            cwd=str(archive.parent),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE
        )
        assert completed.returncode == 0

    def test_verify_checksum_passes(self, archive):
        write_checksum(str(archive))
        assert verify_checksum(str(archive)) == hashlib.sha256(archive.read_bytes()).hexdigest()

    def test_verify_checksum_detects_flipped_byte(self, archive):
        write_checksum(str(archive))

        data = bytearray(archive.read_bytes())
        data[10] ^= 0xFF
        archive.write_bytes(bytes(data))

        with pytest.raises(VerificationError):
            verify_checksum(str(archive))

    def test_verify_checksum_accepts_full_path_sidecar(self, archive):
        """Test sidecars that record the archive's full path still verify."""
        digest = hashlib.sha256(archive.read_bytes()).hexdigest()
        (archive.parent / f'{archive.name}.sha256').write_text(f'{digest}  {archive}\n')

        assert verify_checksum(str(archive)) == digest

    def test_verify_checksum_malformed_sidecar(self, archive):
        (archive.parent / f'{archive.name}.sha256').write_text('not-a-digest  file\n')

        with pytest.raises(VerificationError):
            verify_checksum(str(archive))

    def test_verify_checksum_missing_sidecar(self, archive):
        with pytest.raises(MissingPrerequisiteError):
            verify_checksum(str(archive))

    def test_read_checksum_line(self, archive):
        assert read_checksum_line(str(archive)) is None
        write_checksum(str(archive))
        assert read_checksum_line(str(archive)).endswith(f'  {archive.name}')


class TestMetadata:
    """Test metadata sidecar contents."""

    def test_render_metadata_full_node(self, archive, make_options):
        options = make_options('/root/.koinos', compression_level=9, exclude_logs=True)

        text = render_metadata(
            str(archive), options, 'abc  file.tar.gz',
            created_at=datetime(2024, 10, 20, 12, 0, 0, tzinfo=timezone.utc),
            hostname='node-01'
        )

        assert f'Backup File: {archive.name}' in text
        assert 'Backup Date: 2024-10-20 12:00:00 UTC' in text
        assert 'Backup Size: ' in text
        assert 'Compression: gzip level 9' in text
        assert 'Data Directory: /root/.koinos' in text
        assert 'Hostname: node-01' in text
        assert 'Backup Mode: FULL NODE' in text
        assert 'transaction_store/' in text
        assert 'Seed-Only Mode: false' in text
        assert 'Logs: true' in text
        assert 'Mempool: false' in text
        assert 'Restore Instructions:' in text
        assert text.rstrip().endswith('abc  file.tar.gz')

    def test_render_metadata_seed_node(self, archive, make_options):
        options = make_options('/root/.koinos', mode=BackupMode.SEED_ONLY)

        text = render_metadata(str(archive), options, None, hostname='seed')

        assert 'Backup Mode: SEED NODE ONLY' in text
        assert 'Block data (REQUIRED FOR SEED)' in text
        assert 'transaction_store/' not in text
        assert 'Seed-Only Mode: true' in text
        assert 'Checksum file not found' in text

    @freeze_time("2024-01-15 08:30:00")
    def test_write_metadata_uses_utc_now(self, archive, make_options):
        write_checksum(str(archive))

        result = write_metadata(str(archive), make_options('/data'))

        assert result.value == f'{archive}.metadata'
        assert result.warnings == []
        with open(result.value) as f:
            assert 'Backup Date: 2024-01-15 08:30:00 UTC' in f.read()

    def test_write_metadata_without_checksum_warns(self, archive, make_options):
        result = write_metadata(str(archive), make_options('/data'))

        assert result.has_warning(WarningKind.MISSING_SIDECAR)
        with open(result.value) as f:
            assert 'Checksum file not found' in f.read()

    def test_write_metadata_unwritable_sidecar(self, archive, make_options):
        (archive.parent / f'{archive.name}.metadata').mkdir()

        with pytest.raises(BackupError, match='Failed to write metadata file'):
            write_metadata(str(archive), make_options('/data'))


class TestFinalizeArtifact:
    """Test writing both sidecars together."""

    def test_finalize_artifact_writes_both_sidecars(self, archive, make_options):
        result = finalize_artifact(str(archive), make_options('/data'))

        assert result.value == {
            'checksum': checksum_path(str(archive)),
            'metadata': metadata_path(str(archive)),
        }
        assert result.warnings == []

        checksum_line = read_checksum_line(str(archive))
        with open(result.value['metadata']) as f:
            assert checksum_line in f.read()
