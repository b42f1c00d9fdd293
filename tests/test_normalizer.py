import unittest

from kbcrawler.crawler.normalizer import (
    canonicalize,
    collapse_whitespace,
    first_sentences,
    normalize_content,
    repair_boundaries,
    truncate_words,
)


class NormalizerTests(unittest.TestCase):
    def test_collapse_whitespace(self):
        self.assertEqual(collapse_whitespace("  a \n\t b  "), "a b")

    def test_repair_concatenation_boundaries(self):
        self.assertEqual(repair_boundaries("walletApp"), "wallet App")
        self.assertEqual(repair_boundaries("HTMLParser"), "HTML Parser")
        self.assertEqual(repair_boundaries("since 2024Bitcoin"), "since 2024 Bitcoin")
        self.assertEqual(repair_boundaries("the end.Next part"), "the end. Next part")

    def test_canonicalize_collapses_variants(self):
        self.assertEqual(canonicalize("Pay over LN today"), "Pay over Lightning Network (LN) today")
        self.assertEqual(canonicalize("the lightning network"), "the Lightning Network (LN)")
        self.assertEqual(canonicalize("Lightning Network (LN)"), "Lightning Network (LN)")
        self.assertEqual(canonicalize("Use NWC"), "Use Nostr Wallet Connect (NWC)")

    def test_canonicalize_is_idempotent(self):
        text = "LN and NWC with a PSBT over the Lightning Network"
        once = canonicalize(text)
        self.assertEqual(canonicalize(once), once)

    def test_abbreviation_inside_word_untouched(self):
        self.assertEqual(canonicalize("LNURL withdraw"), "LNURL withdraw")

    def test_first_sentences_skips_short_fragments(self):
        text = "Menu. This is the first real sentence. Second sentence is here! Third one is also here? Fourth one."
        self.assertEqual(
            first_sentences(text),
            "This is the first real sentence. Second sentence is here. Third one is also here.",
        )

    def test_domains_are_not_sentence_breaks(self):
        self.assertEqual(first_sentences("Download it from getalby.com today"), "Download it from getalby.com today.")

    def test_truncate_does_not_split_words(self):
        text = "word " * 100
        result = truncate_words(text.strip(), 300)
        self.assertLessEqual(len(result), 300)
        self.assertTrue(result.endswith("word..."))

    def test_short_text_untouched_by_truncate(self):
        self.assertEqual(truncate_words("short text", 300), "short text")

    def test_normalize_pipeline(self):
        raw = "The walletApp  syncs\n\nwith the LN quickly.Then it is done!"
        self.assertEqual(
            normalize_content(raw),
            "The wallet App syncs with the Lightning Network (LN) quickly. Then it is done.",
        )

    def test_normalize_caps_length(self):
        raw = " ".join(["lightning"] * 200)
        self.assertLessEqual(len(normalize_content(raw)), 300)

    def test_normalize_empty(self):
        self.assertEqual(normalize_content("   \n "), "")


if __name__ == "__main__":
    unittest.main()
