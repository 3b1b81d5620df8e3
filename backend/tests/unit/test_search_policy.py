import pytest

from academyhub.domain.search import models, policy


def test_parse_entity_type():
	assert policy.parse_entity_type("Posts") is models.EntityType.POSTS
	assert policy.parse_entity_type("all") is None
	assert policy.parse_entity_type(None) is None
	assert policy.parse_entity_type("  ") is None
	with pytest.raises(policy.InvalidSearchTypeError) as excinfo:
		policy.parse_entity_type("clubs")
	assert excinfo.value.status_code == 400
	assert excinfo.value.detail == "invalid_type"


def test_clean_text_collapses_and_bounds():
	assert policy.clean_text("  organic \n chemistry ") == "organic chemistry"
	assert policy.clean_text(None) == ""
	assert len(policy.clean_text("y" * 1000)) == 200


def test_malformed_filters_are_dropped():
	filters = policy.build_filters(min_rating="abc", unanswered="maybe", tags=5)
	assert filters.min_rating is None
	assert filters.unanswered_only is False
	assert filters.tags == ()


def test_min_rating_outside_range_is_ignored():
	assert policy.build_filters(min_rating="7").min_rating is None
	assert policy.build_filters(min_rating="nan").min_rating is None
	assert policy.build_filters(min_rating="3.5").min_rating == 3.5


def test_filters_are_normalised():
	filters = policy.build_filters(
		university_id="  abc ",
		category="",
		tags="#Ivy, study,ivy",
		unanswered="true",
		state="ny",
	)
	assert filters.university_id == "abc"
	assert filters.category is None
	assert filters.tags == ("ivy", "study")
	assert filters.unanswered_only is True
	assert filters.state == "ny"


@pytest.mark.parametrize(
	"value,expected",
	[("12", 12), ("x", 5), (None, 5), (True, 5), (" 3 ", 3)],
)
def test_coerce_int(value, expected):
	assert policy.coerce_int(value, default=5) == expected


@pytest.mark.asyncio
async def test_rate_limit_raises_after_budget():
	for _ in range(3):
		await policy.enforce_rate_limit("user-1", kind="search", limit=3)
	with pytest.raises(policy.SearchRateLimitError) as excinfo:
		await policy.enforce_rate_limit("user-1", kind="search", limit=3)
	assert excinfo.value.status_code == 429
	assert 1 <= excinfo.value.retry_after <= 60
	# other callers keep their own budget
	await policy.enforce_rate_limit("user-2", kind="search", limit=3)


def test_capability_unavailable_message():
	exc = policy.CapabilityUnavailable("posts", "managed", "not enabled")
	assert exc.tier == "managed"
	assert "posts" in str(exc)
