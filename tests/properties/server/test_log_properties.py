"""Property-based tests for server output parsing.

- Classification: every line yields an entry with a known level and a
  trimmed message, never an exception
- Buffer bounds: a log buffer never holds more than its capacity and keeps
  the newest lines in arrival order
- Line reassembly: splitting a byte stream into arbitrary chunks yields the
  same lines as feeding it whole
"""

from hypothesis import given, strategies as st

from valheim_dsm.server import LineSplitter, LogBuffer, LogLevel, parse_line

# =============================================================================
# Strategies
# =============================================================================

server_line = st.one_of(
    st.text(max_size=200),
    st.builds(
        lambda stamp, text: f"{stamp}: {text}",
        st.sampled_from(["02/15/2024 12:00:00", "12/31/2023 23:59:59"]),
        st.text(max_size=100),
    ),
    st.sampled_from(
        [
            "Got character ZDOID from Ragnar : -1:1",
            "Game server connected",
            "Exception: NullReferenceException",
            "Warning: low memory",
            "   ",
        ]
    ),
)

stream_text = st.lists(
    st.text(alphabet=st.characters(exclude_categories=("Cs",), exclude_characters="\n\r"), max_size=40),
    max_size=20,
).map(lambda lines: "".join(f"{line}\n" for line in lines))


# =============================================================================
# Properties
# =============================================================================


class TestParseLineProperties:
    @given(raw=server_line)
    def test_always_classifies(self, raw: str) -> None:
        entry = parse_line(raw)

        assert entry.level in set(LogLevel)
        assert entry.raw == raw
        assert entry.message == entry.message.strip()

    @given(raw=server_line)
    def test_message_is_part_of_line(self, raw: str) -> None:
        entry = parse_line(raw)

        assert entry.message in raw.strip()


class TestLogBufferProperties:
    @given(capacity=st.integers(min_value=1, max_value=20), lines=st.lists(st.text(max_size=20), max_size=60))
    def test_keeps_newest_within_capacity(self, capacity: int, lines: list[str]) -> None:
        buffer = LogBuffer(capacity)

        for line in lines:
            _ = buffer.add(line)

        assert buffer.size == min(capacity, len(lines))
        assert [entry.raw for entry in buffer.get_all()] == lines[-capacity:]


class TestLineSplitterProperties:
    @given(text=stream_text, data=st.data())
    def test_chunking_does_not_change_lines(self, text: str, data: st.DataObject) -> None:
        payload = text.encode("utf-8")
        cuts = sorted(data.draw(st.lists(st.integers(min_value=0, max_value=len(payload)), max_size=10)))

        whole = LineSplitter().feed(payload)

        splitter = LineSplitter()
        chunked: list[str] = []
        bounds = [0, *cuts, len(payload)]
        for start, end in zip(bounds, bounds[1:], strict=False):
            chunked.extend(splitter.feed(payload[start:end]))

        assert chunked == whole
        assert whole == text.split("\n")[:-1]
        assert splitter.flush() is None
