import hmac
import hashlib

from deployer.deploy.webhook import compute_signature, verify_signature

SECRET = "3f" * 32
BODY = b'{"ref": "refs/heads/main", "head_commit": {"id": "abc123"}}'


def test_signature_matches_github_format():
    expected = "sha256=" + hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert compute_signature(BODY, SECRET) == expected
    assert verify_signature(BODY, SECRET, expected)


def test_any_body_byte_mutation_rejects():
    sig = compute_signature(BODY, SECRET)
    for i in range(len(BODY)):
        mutated = bytearray(BODY)
        mutated[i] ^= 0x01
        assert not verify_signature(bytes(mutated), SECRET, sig)


def test_any_secret_byte_mutation_rejects():
    sig = compute_signature(BODY, SECRET)
    for i in range(len(SECRET)):
        mutated = SECRET[:i] + ("a" if SECRET[i] != "a" else "b") + SECRET[i + 1:]
        assert not verify_signature(BODY, mutated, sig)


def test_missing_or_malformed_header_rejects():
    digest = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert not verify_signature(BODY, SECRET, None)
    assert not verify_signature(BODY, SECRET, "")
    assert not verify_signature(BODY, SECRET, digest)
    assert not verify_signature(BODY, SECRET, "sha1=" + digest)


def test_signature_is_over_raw_bytes_not_reserialized_json():
    raw = b'{"ref":"refs/heads/main",   "x": 1}'
    sig = compute_signature(raw, SECRET)
    assert verify_signature(raw, SECRET, sig)
    assert not verify_signature(b'{"ref": "refs/heads/main", "x": 1}', SECRET, sig)
