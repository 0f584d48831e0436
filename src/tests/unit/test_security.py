"""Tests for agent token hashing."""

from fleethub.core.security import generate_agent_token, hash_token, verify_token


class TestAgentToken:
    def test_tokens_are_unique(self) -> None:
        assert generate_agent_token() != generate_agent_token()

    def test_hash_is_not_plaintext(self) -> None:
        token = generate_agent_token()
        token_hash = hash_token(token)
        assert token not in token_hash
        assert token_hash.startswith("$argon2id$")

    def test_verify_matches(self) -> None:
        token = generate_agent_token()
        assert verify_token(token, hash_token(token)) is True

    def test_verify_rejects_other_token(self) -> None:
        token_hash = hash_token(generate_agent_token())
        assert verify_token(generate_agent_token(), token_hash) is False

    def test_verify_rejects_malformed_hash(self) -> None:
        """A corrupted stored hash fails closed instead of raising."""
        assert verify_token("token", "not-a-hash") is False
