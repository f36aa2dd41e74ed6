"""
Tests for permanent revert classification.
"""

from ccabot.errors import AttemptError, PermanentRevertError
from ccabot.execution.revert_classifier import RevertClassifier, error_selector


class TestRevertClassifier:
    def test_known_message_is_permanent(self):
        classifier = RevertClassifier()
        assert classifier.is_permanent("execution reverted: Auction is over")
        assert classifier.is_permanent("Exceeds max purchase limit")

    def test_unknown_message_is_retryable(self):
        assert not RevertClassifier().is_permanent("execution reverted: nonce too low")
        assert not RevertClassifier().is_permanent(None)

    def test_custom_error_selector(self):
        data = error_selector("AuctionIsOver()") + "00" * 4
        assert RevertClassifier().is_permanent("execution reverted", data)

    def test_selector_without_prefix(self):
        data = error_selector("MaxPurchaseLimitExceeded()")[2:]
        assert RevertClassifier().is_permanent("", data)

    def test_extra_patterns(self):
        classifier = RevertClassifier.with_extra_patterns(["TokenNotAllowed", " "])
        assert classifier.is_permanent("reverted: tokennotallowed")
        assert "auction is over" in classifier.patterns
        assert "" not in classifier.patterns

    def test_classify(self):
        classifier = RevertClassifier()
        permanent = classifier.classify("simulate", "AuctionIsOver()")
        transient = classifier.classify("simulate", "header not found")
        assert isinstance(permanent, PermanentRevertError)
        assert type(transient) is AttemptError
        assert transient.stage == "simulate"
        assert str(transient) == "simulate failed: header not found"

    def test_selector_format(self):
        selector = error_selector("AuctionIsOver()")
        assert selector.startswith("0x")
        assert len(selector) == 10
