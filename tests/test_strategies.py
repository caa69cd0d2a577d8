"""
Tests for strategy definitions, the executor and the strategies API.
"""

import time

import pytest
from fastapi.testclient import TestClient

from api.strategies import (
    BUILT_IN_STRATEGIES,
    Policy,
    Scoring,
    StopCondition,
    StrategyDefinition,
    StrategyExecutor,
    StrategyManager,
    StrategyStep,
    batch_ranges,
    changed_ranges,
    validate_strategy,
)
from main import app

client = TestClient(app)


def make_strategy(*steps, goal="maximize", metrics=None, **policy):
    return StrategyDefinition(
        id="test",
        name="Test",
        algorithm=[s if isinstance(s, StrategyStep) else StrategyStep(operation=s) for s in steps],
        scoring=Scoring(metrics=metrics or {"hamming_weight": 1.0}, goal=goal),
        policy=Policy(**{"budget": None, "max_steps": None, **policy}),
    )


class TestHelpers:
    """Diff ranges and batching."""

    def test_changed_ranges(self):
        assert changed_ranges("0000", "0110") == [{"start": 1, "end": 2}]
        assert changed_ranges("0101", "0101") == []
        assert changed_ranges("", "") == []

    def test_changed_ranges_length_change(self):
        assert changed_ranges("01", "011") == [{"start": 2, "end": 2}]
        assert changed_ranges("011", "") == [{"start": 0, "end": 2}]

    def test_changed_ranges_limit(self):
        assert len(changed_ranges("0" * 10, "01" * 5, limit=2)) == 2

    def test_batch_ranges(self):
        assert batch_ranges(10, 3) == [(0, 4), (4, 8), (8, 10)]
        assert batch_ranges(2, 4) == [(0, 1), (1, 2)]
        assert batch_ranges(5, 1) == [(0, 5)]

    def test_weighted_score(self):
        strategy = make_strategy("NOT", metrics={"entropy": 2.0, "balance": -1.0})
        assert StrategyExecutor.score(strategy, {"entropy": 0.5, "balance": 1.0}) == 0.0


class TestValidation:
    """Checks before a run."""

    def test_valid(self):
        assert validate_strategy(make_strategy("NOT"), "01")["valid"] is True

    def test_missing_strategy(self):
        assert validate_strategy(None, "01")["errors"] == ["Strategy not found"]

    def test_empty_input_and_algorithm(self):
        errors = validate_strategy(make_strategy(), "")["errors"]
        assert "No data to run the strategy on" in errors
        assert "Strategy has no steps" in errors

    def test_unknown_operation(self):
        result = validate_strategy(make_strategy("FROB"), "01")
        assert result["errors"] == ["Step 1: unknown operation 'FROB'"]

    def test_disallowed_operation(self):
        result = validate_strategy(make_strategy("NOT", allowed_operations=["XOR"]), "01")
        assert "not allowed" in result["errors"][0]

    def test_unknown_metrics(self):
        strategy = make_strategy("NOT", metrics={"nope": 1.0}, stop_when=StopCondition(metric="nah", op="lt", value=1))
        errors = validate_strategy(strategy, "01")["errors"]
        assert "Unknown scoring metric 'nope'" in errors
        assert "Unknown stop metric 'nah'" in errors

    def test_unknown_param_is_warning(self):
        strategy = make_strategy(StrategyStep(operation="NOT", params={"mask": "1"}))
        result = validate_strategy(strategy, "01")
        assert result["valid"] is True
        assert result["warnings"] == ["Step 1: Unknown parameter: mask"]

    def test_built_ins_are_valid(self, random_bits):
        for strategy in BUILT_IN_STRATEGIES:
            assert validate_strategy(strategy, random_bits)["valid"], strategy.id


class TestExecutor:
    """Policy enforcement during a run."""

    def test_single_step(self):
        run = StrategyExecutor().run(make_strategy("NOT"), "0000")
        assert run.final_bits == "1111"
        assert run.stop_reason == "completed"
        assert run.spent == 1
        assert run.final_score == 4
        step = run.steps[0]
        assert step.index == 1
        assert step.before_bits == "0000"
        assert step.bit_ranges == [{"start": 0, "end": 3}]
        assert step.metrics["hamming_weight"] == 4

    def test_budget_stops_run(self):
        run = StrategyExecutor().run(make_strategy("NOT", iterations=5, budget=3), "0000")
        assert run.stop_reason == "budget"
        assert len(run.steps) == 3
        assert run.spent == 3

    def test_max_steps_stops_run(self):
        run = StrategyExecutor().run(make_strategy("NOT", iterations=5, max_steps=2), "0000")
        assert run.stop_reason == "max_steps"
        assert len(run.steps) == 2
        assert run.final_bits == "0000"

    def test_only_improving_steps_accepted(self):
        strategy = make_strategy("NOT", goal="minimize", accept_only_improving=True)
        run = StrategyExecutor().run(strategy, "0001")
        assert run.steps == []
        assert run.final_bits == "0001"
        assert run.rejected[0]["reason"] == "no improvement"
        assert run.rejected[0]["score"] == 3

    def test_disallowed_step_is_skipped_without_cost(self):
        strategy = make_strategy(
            StrategyStep(operation="XOR", params={"mask": "1"}),
            "NOT",
            allowed_operations=["NOT"],
        )
        run = StrategyExecutor().run(strategy, "0000")
        assert [s.operation for s in run.steps] == ["NOT"]
        assert run.rejected[0]["reason"] == "not allowed by policy"
        assert run.spent == 1

    def test_failing_operation_is_rejected(self):
        strategy = make_strategy(StrategyStep(operation="APPEND", params={"bits": "2"}))
        run = StrategyExecutor().run(strategy, "01")
        assert run.steps == []
        assert run.spent == 1
        assert run.rejected[0]["reason"].startswith("Operation failed")

    def test_oversized_result_is_rejected(self, monkeypatch):
        monkeypatch.setenv("BITWISE_MAX_BITS", "96")
        strategy = make_strategy(StrategyStep(operation="APPEND", params={"bits": "1" * 32}), iterations=10)
        run = StrategyExecutor().run(strategy, "0" * 64)
        assert len(run.steps) == 1
        assert len(run.final_bits) == 96
        assert run.stop_reason == "completed"
        assert len(run.rejected) == 9
        assert {r["reason"] for r in run.rejected} == {"size limit"}
        assert run.spent == 10

    def test_stop_condition(self):
        strategy = make_strategy(
            "NOT",
            iterations=10,
            stop_when=StopCondition(metric="hamming_weight", op="ge", value=4),
        )
        run = StrategyExecutor().run(strategy, "0000")
        assert run.stop_reason == "condition"
        assert len(run.steps) == 1

    def test_batches_split_the_data(self):
        run = StrategyExecutor().run(make_strategy("NOT", batches=2), "0000")
        assert [s.after_bits for s in run.steps] == ["1100", "1111"]
        assert run.steps[1].bit_ranges == [{"start": 2, "end": 3}]

    def test_step_range_overrides_batches(self):
        strategy = make_strategy(StrategyStep(operation="NOT", range=(1, 3)), batches=4)
        run = StrategyExecutor().run(strategy, "0000")
        assert run.final_bits == "0110"
        assert len(run.steps) == 1

    def test_progress_callback_can_cancel(self):
        calls = []

        def progress(percent, message):
            calls.append(percent)
            return False

        run = StrategyExecutor().run(make_strategy("NOT", iterations=3), "0000", progress)
        assert run.cancelled
        assert len(run.steps) == 1
        assert calls[0] < 100

    def test_should_cancel(self):
        run = StrategyExecutor().run(make_strategy("NOT"), "0000", should_cancel=lambda: True)
        assert run.stop_reason == "cancelled"
        assert run.steps == []

    def test_on_step_reports_accepted_and_rejected(self):
        seen = []
        strategy = make_strategy("NOT", goal="minimize", accept_only_improving=True, iterations=2)
        StrategyExecutor(on_step=lambda step, total, score: seen.append((step["accepted"], total))).run(
            strategy, "1110"
        )
        # 1110 -> 0001 improves, 0001 -> 1110 does not
        assert seen == [(True, 1), (False, 1)]


class TestStrategyManager:
    """Persistence of custom strategies."""

    def test_create_and_reload(self, config_store):
        manager = StrategyManager(store=config_store)
        created = manager.create({"name": "Mine", "algorithm": [{"operation": "NOT"}]})
        assert created.id.startswith("strategy_")
        again = StrategyManager(store=config_store).get(created.id)
        assert again.algorithm[0].operation == "NOT"
        assert again.built_in is False

    def test_built_ins_protected(self, config_store):
        manager = StrategyManager(store=config_store)
        assert manager.update("entropy-reduction", {"name": "x"}) is None
        assert manager.delete("pattern-mixing") is False

    def test_built_ins_are_copies(self, config_store):
        manager = StrategyManager(store=config_store)
        manager.get("entropy-reduction").name = "changed"
        assert manager.get("entropy-reduction").name == "Entropy Reduction"

    def test_update_and_delete(self, config_store):
        manager = StrategyManager(store=config_store)
        created = manager.create({"name": "Mine"})
        assert manager.update(created.id, {"description": "new"}).description == "new"
        assert manager.delete(created.id)
        assert manager.get(created.id) is None


def create_strategy(**overrides):
    body = {
        "name": "Invert",
        "algorithm": [{"operation": "NOT"}],
        "scoring": {"metrics": {"hamming_weight": 1.0}, "goal": "maximize"},
        "policy": {"budget": 10, "max_steps": 10},
        **overrides,
    }
    response = client.post("/api/strategies", json=body)
    assert response.status_code == 200
    return response.json()


class TestStrategiesAPI:
    """Strategy CRUD and runs over HTTP."""

    def test_built_ins_listed(self):
        ids = [s["id"] for s in client.get("/api/strategies").json()["strategies"]]
        assert "entropy-reduction" in ids
        assert "pattern-mixing" in ids

    def test_built_ins_read_only(self):
        assert client.put("/api/strategies/entropy-reduction", json={"name": "x"}).status_code == 403
        assert client.delete("/api/strategies/entropy-reduction").status_code == 403

    def test_crud(self):
        created = create_strategy()
        assert client.get(f"/api/strategies/{created['id']}").json()["name"] == "Invert"
        updated = client.put(f"/api/strategies/{created['id']}", json={"name": "Flip"}).json()
        assert updated["name"] == "Flip"
        assert updated["algorithm"][0]["operation"] == "NOT"
        assert client.delete(f"/api/strategies/{created['id']}").status_code == 200
        assert client.get(f"/api/strategies/{created['id']}").status_code == 404

    def test_validate_endpoint(self):
        created = create_strategy(algorithm=[{"operation": "FROB"}])
        data = client.post(f"/api/strategies/{created['id']}/validate", json={"bits": "01"}).json()
        assert data["valid"] is False
        missing = client.post("/api/strategies/missing/validate", json={}).json()
        assert missing["errors"] == ["Strategy not found"]

    def test_run_invalid_strategy(self):
        created = create_strategy(algorithm=[])
        response = client.post(f"/api/strategies/{created['id']}/run", json={"bits": "01", "wait": True})
        assert response.status_code == 400

    def test_run_and_wait(self):
        created = create_strategy()
        response = client.post(f"/api/strategies/{created['id']}/run", json={"bits": "0000", "wait": True})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["stop_reason"] == "completed"
        assert data["steps"] == 1
        assert data["final_score"] == 4

        result = client.get(f"/api/results/{data['result_id']}").json()
        assert result["initial_bits"] == "0000"
        assert result["final_bits"] == "1111"
        assert result["strategy_name"] == "Invert"
        assert result["files_used"]["data"] == "inline"

        job = client.get(f"/api/strategies/jobs/{data['job_id']}").json()
        assert job["status"] == "completed"
        assert job["metrics"]["steps"] == 1

    def test_run_applies_to_file(self):
        created = create_strategy()
        file_id = client.post("/api/files", json={"name": "src", "bits": "0000"}).json()["id"]
        body = {"file_id": file_id, "wait": True, "apply_to_file": True}
        data = client.post(f"/api/strategies/{created['id']}/run", json=body).json()
        assert data["applied_to_file"] is True
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "1111"
        history = client.get(f"/api/files/{file_id}/history").json()["entries"]
        assert history[0]["description"] == "Strategy: Invert"

        result = client.get(f"/api/results/{data['result_id']}").json()
        assert result["source_file_id"] == file_id

    def test_run_in_background(self):
        created = create_strategy()
        data = client.post(f"/api/strategies/{created['id']}/run", json={"bits": "0000"}).json()
        assert "job_id" in data

        deadline = time.time() + 10
        job = {}
        while time.time() < deadline:
            job = client.get(f"/api/strategies/jobs/{data['job_id']}").json()
            if job["status"] in ("completed", "failed", "cancelled"):
                break
            time.sleep(0.05)
        assert job["status"] == "completed"
        assert job["result"]["steps"] == 1

        listed = [j["id"] for j in client.get("/api/strategies/jobs").json()["jobs"]]
        assert data["job_id"] in listed
        assert client.post(f"/api/strategies/jobs/{data['job_id']}/cancel").status_code == 400

    def test_missing_job(self):
        assert client.get("/api/strategies/jobs/nope").status_code == 404
        assert client.post("/api/strategies/jobs/nope/cancel").status_code == 404

    @pytest.mark.slow
    def test_built_in_run(self):
        response = client.post(
            "/api/strategies/entropy-reduction/run",
            json={"bits": "0110" * 64, "wait": True},
        )
        data = response.json()
        assert data["status"] == "completed"
        assert data["spent"] <= 100
        assert data["final_score"] <= data["initial_score"]
