import pytest

from app.core.exceptions import ConflictError, ExperimentConflict, ExperimentNotFound, ExperimentStateError
from app.enums.pricing import ExperimentArm
from app.models.price_experiment import PriceExperiment
from app.services import experiment_runner
from app.services.experiment_runner import assign_arm, two_proportion_z_test
from app.services.pricing_service import orchestrator


def _set_counts(db, experiment, control, variant):
    experiment.control_impressions, experiment.control_conversions = control
    experiment.variant_impressions, experiment.variant_conversions = variant
    db.commit()


def _session_for(experiment_id, arm):
    for i in range(1000):
        session_id = f"session-{i}"
        if assign_arm(experiment_id, session_id) == arm:
            return session_id
    raise AssertionError("no session hashed to arm")


# ---------- BUCKETING ----------

def test_assignment_is_sticky_and_balanced():
    arms = [assign_arm(42, f"s{i}") for i in range(400)]
    assert arms == [assign_arm(42, f"s{i}") for i in range(400)]
    variant_share = sum(1 for a in arms if a == ExperimentArm.variant) / len(arms)
    assert 0.35 < variant_share < 0.65


def test_assignment_depends_on_experiment():
    sessions = [f"s{i}" for i in range(50)]
    assert [assign_arm(1, s) for s in sessions] != [assign_arm(2, s) for s in sessions]


# ---------- STATS ----------

def test_z_test_matches_pooled_formula():
    z, p_value = two_proportion_z_test(5, 50, 14, 50)
    assert z == pytest.approx(2.294, abs=1e-3)
    assert p_value == pytest.approx(0.0218, abs=1e-3)


def test_z_test_degenerate_inputs():
    assert two_proportion_z_test(0, 0, 1, 10) == (None, None)
    assert two_proportion_z_test(0, 10, 0, 10) == (0.0, 1.0)


# ---------- LIFECYCLE ----------

def test_start_defaults_control_to_current_price(db, make_product):
    product = make_product(current_price=100.0)
    experiment = experiment_runner.start(db, product.id, "ten off", 90.0)
    assert experiment.status == "running"
    assert experiment.control_price == 100.0
    assert experiment.started_at is not None


def test_second_running_experiment_conflicts(db, make_product):
    product = make_product()
    experiment_runner.start(db, product.id, "first", 90.0)
    with pytest.raises(ExperimentConflict):
        experiment_runner.start(db, product.id, "second", 95.0)


def test_impressions_and_conversions_hit_assigned_arm(db, make_product):
    product = make_product(current_price=100.0)
    experiment = experiment_runner.start(db, product.id, "t", 90.0)
    session_id = _session_for(experiment.id, ExperimentArm.variant)

    experiment_runner.record_impression(db, experiment.id, session_id)
    experiment_runner.record_impression(db, experiment.id, session_id)
    experiment_runner.record_conversion(db, experiment.id, session_id)

    db.refresh(experiment)
    assert experiment.variant_impressions == 2
    assert experiment.variant_conversions == 1
    assert experiment.variant_revenue == pytest.approx(90.0)
    assert experiment.control_impressions == 0

    assignment = experiment_runner.get_assigned_price(db, experiment.id, session_id)
    assert assignment["arm"] == "variant"
    assert assignment["price"] == 90.0


def test_results_inconclusive_below_min_sample(db, make_product):
    product = make_product()
    experiment = experiment_runner.start(db, product.id, "t", 90.0)
    _set_counts(db, experiment, (10, 1), (10, 9))

    results = experiment_runner.get_results(db, experiment.id)
    assert results["significant"] is True
    assert results["sample_size_met"] is False
    assert results["winner"] == "inconclusive"


def test_complete_applies_winning_variant(db, make_product):
    product = make_product(current_price=100.0)
    experiment = experiment_runner.start(db, product.id, "t", 90.0)
    _set_counts(db, experiment, (50, 5), (50, 14))

    results = experiment_runner.complete(db, experiment.id, user_id=3)

    assert results["winner"] == "variant"
    assert results["p_value"] < 0.05
    assert results["status"] == "completed"
    db.refresh(product)
    assert product.current_price == 90.0
    assert results["price_change"]["reason"] == "manual"


def test_complete_inconclusive_leaves_price(db, make_product):
    product = make_product(current_price=100.0)
    experiment = experiment_runner.start(db, product.id, "t", 90.0)
    _set_counts(db, experiment, (50, 10), (50, 11))

    results = experiment_runner.complete(db, experiment.id)

    assert results["winner"] == "inconclusive"
    assert results["price_change"] is None
    db.refresh(product)
    assert product.current_price == 100.0


def test_illegal_transitions(db, make_product):
    product = make_product()
    experiment = experiment_runner.start(db, product.id, "t", 90.0)
    experiment_runner.cancel(db, experiment.id)

    with pytest.raises(ExperimentStateError):
        experiment_runner.complete(db, experiment.id)
    with pytest.raises(ExperimentStateError):
        experiment_runner.cancel(db, experiment.id)
    with pytest.raises(ExperimentStateError):
        experiment_runner.record_impression(db, experiment.id, "s1")

    # cancelling frees the product for a new experiment
    assert experiment_runner.start(db, product.id, "again", 95.0).status == "running"


def test_list_filters(db, make_product):
    a = make_product(name="a")
    b = make_product(name="b")
    first = experiment_runner.start(db, a.id, "a1", 90.0)
    experiment_runner.cancel(db, first.id)
    experiment_runner.start(db, a.id, "a2", 90.0)
    experiment_runner.start(db, b.id, "b1", 90.0)

    assert len(experiment_runner.list_experiments(db, product_id=a.id)) == 2
    running = experiment_runner.list_experiments(db, status="running")
    assert {e.name for e in running} == {"a2", "b1"}
    assert experiment_runner.count_running(db) == 2
    assert db.query(PriceExperiment).count() == 3


def test_unknown_experiment(db):
    with pytest.raises(ExperimentNotFound):
        experiment_runner.get_results(db, 999)


def test_failed_winner_apply_leaves_experiment_running(db, make_product, monkeypatch):
    product = make_product(current_price=100.0)
    experiment = experiment_runner.start(db, product.id, "t", 90.0)
    _set_counts(db, experiment, (50, 5), (50, 14))

    def conflicting_apply(*args, **kwargs):
        raise ConflictError("Product kept changing", {"product_id": product.id})

    monkeypatch.setattr(orchestrator, "apply_price_change", conflicting_apply)
    with pytest.raises(ConflictError):
        experiment_runner.complete(db, experiment.id)

    db.refresh(experiment)
    assert experiment.status == "running"
    assert experiment.winner is None

    monkeypatch.undo()
    results = experiment_runner.complete(db, experiment.id)
    assert results["status"] == "completed"
    db.refresh(product)
    assert product.current_price == 90.0
