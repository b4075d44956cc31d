"""Tests for score fusion, de-duplication and the relevance gate."""

import itertools

import pytest

from conftest import candidate, keyword_hit, vector_hit
from docmind.src.core.query_analysis import BALANCED_PROFILE, LEXICAL_PROFILE
from docmind.src.core.retrieval import Deduplicator, RelevanceGate, ScoreFusion, sort_by_combined


# =============================================================================
# Fusion
# =============================================================================


class TestScoreFusion:

    def test_balanced_example(self):
        """Keyword 80 + distance 0.5 on A, distance 1.0 on B."""
        fused = ScoreFusion().fuse([keyword_hit("A", 80)], [vector_hit("A", 0.5), vector_hit("B", 1.0)], BALANCED_PROFILE)

        assert fused["A"].combined_score == pytest.approx(0.4 + 0.5 / 1.5)
        assert fused["A"].combined_score == pytest.approx(0.733, abs=1e-3)
        assert fused["B"].combined_score == pytest.approx(0.25)
        assert [c.chunk_id for c in sort_by_combined(list(fused.values()))] == ["A", "B"]

    def test_branch_scores_are_recorded(self):
        fused = ScoreFusion().fuse([keyword_hit("A", 80)], [vector_hit("A", 0.5)], BALANCED_PROFILE)
        a = fused["A"]
        assert a.keyword_score == 80
        assert a.vector_score == pytest.approx(1 / 1.5)
        assert a.vector_distance == 0.5
        assert a.rerank_score is None

    def test_keyword_only_candidate_has_no_distance(self):
        fused = ScoreFusion().fuse([keyword_hit("K", 30)], [], LEXICAL_PROFILE)
        assert fused["K"].combined_score == pytest.approx(0.7 * 0.3)
        assert fused["K"].vector_distance is None

    def test_keyword_score_is_clamped(self):
        assert ScoreFusion.normalize_keyword(250) == 1.0
        assert ScoreFusion.normalize_keyword(-3) == 0.0

    def test_result_independent_of_arrival_order(self):
        keyword = [keyword_hit("A", 80), keyword_hit("B", 12.5), keyword_hit("A", 33.3)]
        vector = [vector_hit("A", 0.7), vector_hit("C", 0.1), vector_hit("B", 1.9)]
        reference = {k: c.combined_score for k, c in ScoreFusion().fuse(keyword, vector, BALANCED_PROFILE).items()}

        for kw_perm, vec_perm in itertools.product(itertools.permutations(keyword), itertools.permutations(vector)):
            fused = ScoreFusion().fuse(list(kw_perm), list(vec_perm), BALANCED_PROFILE)
            assert {k: c.combined_score for k, c in fused.items()} == reference

    def test_no_hits(self):
        assert ScoreFusion().fuse([], [], BALANCED_PROFILE) == {}


# =============================================================================
# Deduplication
# =============================================================================


class TestDeduplicator:

    def test_near_duplicate_dropped_first_wins(self):
        ranked = [candidate("A", 0.9, content="abcdefghijklmnopqrst"), candidate("B", 0.8, content="abcdefghijklmnopqrstu"), candidate("C", 0.7, content="完全不同的内容")]
        assert [c.chunk_id for c in Deduplicator(0.8).deduplicate(ranked)] == ["A", "C"]

    def test_threshold_is_strict(self):
        ranked = [candidate("A", content="abcd"), candidate("B", content="abcde")]  # Jaccard exactly 0.8
        assert [c.chunk_id for c in Deduplicator(0.8).deduplicate(ranked)] == ["A", "B"]

    def test_whitespace_and_case_are_ignored(self):
        ranked = [candidate("A", content="Refund Policy"), candidate("B", content="refund   policy")]
        assert [c.chunk_id for c in Deduplicator(0.8).deduplicate(ranked)] == ["A"]

    def test_idempotent(self):
        ranked = [candidate(str(i), content=text) for i, text in enumerate(["退款流程说明", "退款流程说明。", "发票开具方式", "会员积分规则", "发票开具的方式"])]
        dedup = Deduplicator(0.8)
        once = dedup.deduplicate(ranked)
        assert [c.chunk_id for c in dedup.deduplicate(once)] == [c.chunk_id for c in once]


# =============================================================================
# Relevance gate
# =============================================================================


class TestRelevanceGate:

    @pytest.fixture
    def gate(self):
        return RelevanceGate(score_threshold=0.3, distance_threshold=2.0)

    def test_empty_is_not_relevant(self, gate):
        assert gate.is_relevant("退款", []) is False

    def test_high_combined_score_passes(self, gate):
        assert gate.is_relevant("无关", [candidate("A", 0.5, content="其他内容")]) is True

    def test_only_the_top_candidate_counts(self, gate):
        assert gate.is_relevant("无关", [candidate("A", 0.1, content="其他"), candidate("B", 0.9)]) is False

    def test_overlap_with_close_vector_passes(self, gate):
        top = candidate("A", 0.1, content="退款流程如下", vector_distance=1.0)
        assert gate.is_relevant("退款", [top]) is True

    def test_overlap_with_far_vector_fails(self, gate):
        top = candidate("A", 0.1, content="退款流程如下", vector_distance=2.5)
        assert gate.is_relevant("退款", [top]) is False

    def test_keyword_only_low_score_fails(self, gate):
        top = candidate("A", 0.1, content="退款流程如下")
        assert gate.is_relevant("退款", [top]) is False

    def test_overlap_with_rerank_score_passes(self, gate):
        top = candidate("A", 0.9, content="退款流程如下", rerank_score=0.1)
        assert gate.is_relevant("退款", [top]) is True

    def test_close_vector_without_overlap_fails(self, gate):
        top = candidate("A", 0.1, content="发票说明", vector_distance=0.1)
        assert gate.is_relevant("退款", [top]) is False
