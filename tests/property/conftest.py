"""Hypothesis strategies for property-based testing of the normalizer."""

import json
import sys
from pathlib import Path

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from hypothesis import strategies as st, settings

from reply_normalizer.normalization import ARTIFACT_TOKENS, NULL_LIKE_TOKENS


# Configure Hypothesis settings for minimum 100 iterations
settings.register_profile("default", max_examples=100)
settings.load_profile("default")


# =============================================================================
# Plain Text Strategies
# =============================================================================

# Text with no fences, JSON punctuation, emphasis markers or artifact brackets
plain_text_strategy = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N", "Zs"),
        whitelist_characters=".,!?;:'-()",
    ),
    min_size=0,
    max_size=200,
)

whitespace_strategy = st.text(alphabet=" \t\n\r", min_size=0, max_size=20)

null_like_token_strategy = st.sampled_from(sorted(NULL_LIKE_TOKENS))

artifact_token_strategy = st.sampled_from(ARTIFACT_TOKENS)


# =============================================================================
# Envelope Strategies
# =============================================================================

@st.composite
def nested_answer_envelope(draw, min_depth=1, max_depth=10):
    """Wrap a plain answer in `depth` string-encoded {"answer": ...} layers.

    Returns (encoded, answer, depth).
    """
    answer = draw(plain_text_strategy.filter(lambda s: s.strip() != ""))
    depth = draw(st.integers(min_value=min_depth, max_value=max_depth))
    encoded = answer
    for _ in range(depth):
        encoded = json.dumps({"answer": encoded})
    return encoded, answer, depth


@st.composite
def nested_list_envelope(draw, min_depth=1, max_depth=12):
    """Wrap a plain answer in `depth` one-element JSON arrays."""
    value = draw(plain_text_strategy)
    depth = draw(st.integers(min_value=min_depth, max_value=max_depth))
    wrapped = value
    for _ in range(depth):
        wrapped = [wrapped]
    return json.dumps(wrapped)


@st.composite
def decorated_response(draw):
    """A plain answer with fences, emphasis and artifacts sprinkled around it."""
    answer = draw(plain_text_strategy)
    body = draw(st.sampled_from([answer, f"**{answer}**", f"*{answer}*"]))
    prefix = draw(st.one_of(st.just(""), artifact_token_strategy))
    suffix = draw(st.one_of(st.just(""), artifact_token_strategy))
    text = prefix + body + suffix
    if draw(st.booleans()):
        text = json.dumps({"answer": text})
    if draw(st.booleans()):
        text = f"```json\n{text}\n```"
    return text


# Adversarial input: arbitrary text mixed with JSON-ish fragments
json_fragment_strategy = st.one_of(
    st.text(min_size=0, max_size=300),
    st.text(alphabet='{}[]":,\\ answer*`', min_size=0, max_size=100),
    st.recursive(
        st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=20)),
        lambda children: st.one_of(
            st.lists(children, max_size=3),
            st.dictionaries(st.sampled_from(["answer", "text", "a"]), children, max_size=3),
        ),
        max_leaves=10,
    ).map(json.dumps),
)
