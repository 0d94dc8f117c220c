"""
Tests for ERC-20 Transfer decoding and first-match log scanning.
"""

from factories import (
    EXPECTED_AMOUNT,
    OTHER_TOKEN,
    PAYER,
    TOKEN,
    USDC,
    topic_address,
    transfer_log,
)
from mintrelay_api.chain import RawLog
from mintrelay_api.events import TRANSFER_TOPIC, decode_transfer, find_transfer


class TestDecodeTransfer:
    """Tests for decode_transfer."""

    def test_decode_valid_transfer(self):
        transfer = decode_transfer(transfer_log(index=3))
        assert transfer is not None
        assert transfer.from_address == PAYER
        assert transfer.to_address == TOKEN
        assert transfer.value == EXPECTED_AMOUNT
        assert transfer.log_index == 3

    def test_wrong_event_signature(self):
        log = transfer_log()
        log = RawLog(address=log.address, topics=(b"\x01" * 32,) + log.topics[1:], data=log.data)
        assert decode_transfer(log) is None

    def test_erc721_style_transfer_rejected(self):
        """ERC-721 Transfer shares topic0 but indexes the token id (4 topics, no data)."""
        log = RawLog(
            address=USDC,
            topics=(TRANSFER_TOPIC, topic_address(PAYER), topic_address(TOKEN), (1).to_bytes(32, "big")),
            data=b"",
        )
        assert decode_transfer(log) is None

    def test_insufficient_topics(self):
        log = RawLog(address=USDC, topics=(TRANSFER_TOPIC,), data=(5).to_bytes(32, "big"))
        assert decode_transfer(log) is None

    def test_short_data(self):
        log = transfer_log()
        log = RawLog(address=log.address, topics=log.topics, data=log.data[:31])
        assert decode_transfer(log) is None

    def test_dirty_address_padding(self):
        log = transfer_log()
        dirty = b"\xff" + log.topics[1][1:]
        log = RawLog(address=log.address, topics=(TRANSFER_TOPIC, dirty, log.topics[2]), data=log.data)
        assert decode_transfer(log) is None

    def test_max_uint256_value(self):
        value = 2**256 - 1
        transfer = decode_transfer(transfer_log(value=value))
        assert transfer is not None
        assert transfer.value == value


class TestFindTransfer:
    """Tests for the first-match scan over receipt logs."""

    def test_finds_matching_transfer(self):
        transfer = find_transfer([transfer_log()], token=USDC, amount=EXPECTED_AMOUNT, recipient=TOKEN)
        assert transfer is not None
        assert transfer.value == EXPECTED_AMOUNT

    def test_skips_logs_from_other_contracts(self):
        logs = [transfer_log(token=OTHER_TOKEN)]
        assert find_transfer(logs, token=USDC, amount=EXPECTED_AMOUNT, recipient=TOKEN) is None

    def test_first_match_wins(self):
        logs = [
            transfer_log(token=OTHER_TOKEN, index=0),
            transfer_log(value=EXPECTED_AMOUNT + 1, index=1),
            transfer_log(index=2),
            transfer_log(index=3),
        ]
        transfer = find_transfer(logs, token=USDC, amount=EXPECTED_AMOUNT, recipient=TOKEN)
        assert transfer is not None
        assert transfer.log_index == 2

    def test_undecodable_candidate_is_skipped(self):
        broken = RawLog(address=USDC, topics=(TRANSFER_TOPIC,), data=b"", log_index=0)
        logs = [broken, transfer_log(index=1)]
        transfer = find_transfer(logs, token=USDC, amount=EXPECTED_AMOUNT, recipient=TOKEN)
        assert transfer is not None
        assert transfer.log_index == 1

    def test_off_by_one_values_rejected(self):
        for value in (EXPECTED_AMOUNT - 1, EXPECTED_AMOUNT + 1, 0, EXPECTED_AMOUNT * 2):
            logs = [transfer_log(value=value)]
            assert find_transfer(logs, token=USDC, amount=EXPECTED_AMOUNT, recipient=TOKEN) is None, value

    def test_wrong_recipient_rejected(self):
        logs = [transfer_log(to=PAYER)]
        assert find_transfer(logs, token=USDC, amount=EXPECTED_AMOUNT, recipient=TOKEN) is None

    def test_any_recipient_when_not_given(self):
        logs = [transfer_log(to=PAYER)]
        transfer = find_transfer(logs, token=USDC, amount=EXPECTED_AMOUNT)
        assert transfer is not None
        assert transfer.to_address == PAYER

    def test_address_comparison_is_case_insensitive(self):
        logs = [transfer_log(token=USDC.lower())]
        transfer = find_transfer(logs, token=USDC.upper().replace("0X", "0x"), amount=EXPECTED_AMOUNT, recipient=TOKEN.lower())
        assert transfer is not None

    def test_empty_logs(self):
        assert find_transfer([], token=USDC, amount=EXPECTED_AMOUNT) is None
