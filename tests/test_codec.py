from sigrelay.codec import decode, encode
from sigrelay.envelope import room_info_envelope


def test_codec_round_trip() -> None:
    env = room_info_envelope(["alice", "bob"], ["alice"])
    text = encode(env)
    assert isinstance(text, str)
    assert decode(text) == env


def test_encode_is_compact_and_keeps_unicode() -> None:
    assert encode({"type": "error", "data": "Zoë"}) == '{"type":"error","data":"Zoë"}'
