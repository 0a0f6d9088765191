import pytest

from codelibrarian.cache.intent import (
    IntentCategory,
    build_scope_signature,
    classify_category,
    compute_intent_similarity,
    identifier_order_conflicts,
    normalize_intent,
)
from codelibrarian.query.types import Depth, Query, QueryFilter


@pytest.mark.parametrize(
    "intent,expected",
    [
        ("where is the `getStorage` function defined", IntentCategory.LOOKUP),
        ("getStorage implementation", IntentCategory.LOOKUP),
        ("where is the class Beta", IntentCategory.LOOKUP),
        ("Where is the login function", IntentCategory.CONCEPTUAL),
        ("how does auth work", IntentCategory.CONCEPTUAL),
        ("why does the cache exist", IntentCategory.CONCEPTUAL),
        ("why does login fail", IntentCategory.DIAGNOSTIC),
        ("why is login slow", IntentCategory.DIAGNOSTIC),
        ("request timeouts in the worker", IntentCategory.DIAGNOSTIC),
        ("why doesn't login work", IntentCategory.DIAGNOSTIC),
        ("why does login not work", IntentCategory.DIAGNOSTIC),
        ("login isn't working", IntentCategory.DIAGNOSTIC),
        ("Storage class", IntentCategory.LOOKUP),
        ("show Storage class", IntentCategory.LOOKUP),
        ("Explain the class hierarchy", IntentCategory.CONCEPTUAL),
        ("", None),
        ("   ", None),
        (None, None),
    ],
)
def test_classify_category(intent, expected):
    assert classify_category(intent) is expected


def test_conceptual_paraphrases_share_a_canonical_form():
    assert normalize_intent("how does auth work") == "authentication"
    assert normalize_intent("explain authentication flow") == "authentication"
    assert compute_intent_similarity("how does auth work", "explain authentication flow") == 1.0


def test_lookup_synonyms_collapse():
    assert normalize_intent("where is getStorage defined") == "getstorage definition"
    assert normalize_intent("getStorage implementation") == "getstorage definition"


def test_diagnostic_synonyms_collapse():
    assert normalize_intent("why does login fail") == "failure login"
    assert normalize_intent("login failing, why") == "failure login"
    assert normalize_intent("request timeouts") == "request timeout"


def test_stopword_only_intent_normalizes_to_empty():
    assert normalize_intent("what is the") == ""
    assert compute_intent_similarity("what is the", "what is the") == 0.0


def test_partial_overlap_is_fractional():
    similarity = compute_intent_similarity("how does auth work", "how does auth token refresh work")
    assert similarity == pytest.approx(0.5)


def test_scope_signature_uses_filters_and_depth_only():
    scoped = Query(
        intent="anything",
        depth=Depth.L0,
        task_type="debug",
        filter=QueryFilter(path_prefix="src/", language="python"),
    )
    assert build_scope_signature(scoped) == "path=src/|lang=python|task=debug|depth=L0"
    assert build_scope_signature(Query(intent="other")) == "path=*|lang=*|task=*|depth=L1"
    assert build_scope_signature(Query(intent="a")) == build_scope_signature(Query(intent="b"))


def test_identifiers_keep_their_order():
    assert normalize_intent("does parseConfig call loadSettings") == "parseconfig loadsettings call"
    assert normalize_intent("does loadSettings call parseConfig") == "loadsettings parseconfig call"
    assert compute_intent_similarity(
        "does parseConfig call loadSettings", "does loadSettings call parseConfig"
    ) == 0.0
    assert compute_intent_similarity(
        "does parseConfig call loadSettings", "parseConfig call loadSettings"
    ) == 1.0


def test_identifier_order_conflicts_needs_two_shared_names():
    assert identifier_order_conflicts(("a_b", "c_d"), ("c_d", "a_b"))
    assert not identifier_order_conflicts(("a_b", "c_d"), ("a_b", "c_d"))
    assert not identifier_order_conflicts(("a_b",), ("a_b",))
    assert not identifier_order_conflicts(("a_b", "c_d"), ("c_d", "e_f"))
