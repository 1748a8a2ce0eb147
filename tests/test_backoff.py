from opsboard.services.refresh.backoff import BackoffPolicy, BackoffState


class TestBackoffPolicy:

    def test_delays_are_non_decreasing_and_capped(self):
        policy = BackoffPolicy(base=15, cap=300, max_failures=6)
        state = BackoffState()
        now = 0.0
        delays = []
        for _ in range(8):
            delays.append(policy.record_failure(state, now))
            assert state.next_allowed_at - now == delays[-1]

        assert delays == sorted(delays)
        assert max(delays) == 300
        assert state.failure_count == 6

    def test_delay_formula(self):
        policy = BackoffPolicy(base=15, cap=300)
        assert policy.delay_for(1) == 30
        assert policy.delay_for(2) == 60
        assert policy.delay_for(5) == 300

    def test_success_resets_state(self):
        policy = BackoffPolicy()
        state = BackoffState()
        policy.record_failure(state, 100.0)
        policy.record_failure(state, 100.0)

        state.reset()
        assert state.failure_count == 0
        assert state.next_allowed_at == 0
        assert state.allows(0.0)

    def test_allows_only_after_next_allowed_at(self):
        policy = BackoffPolicy(base=10, cap=100)
        state = BackoffState()
        policy.record_failure(state, 50.0)  # next at 70

        assert not state.allows(69.9)
        assert state.allows(70.0)
