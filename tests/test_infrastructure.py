"""Unit tests for core infrastructure components."""

import json
from datetime import date, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from src.constants import MODEL_SCHEMA_VERSION, ModelName
from src.models.training import ModelTrainingRecord
from src.utils import errors
from src.utils.errors import (
    ConfigurationError,
    IntelligenceError,
    LedgerError,
    LLMError,
    ModelNotTrainedError,
    ModelStoreConflictError,
    ModelStoreError,
    UnsanitizedPromptError,
)


def test_config_loading():
    """Test that the bundled settings load with every section."""
    from src.utils.config_loader import get_section, load_config

    config = load_config()
    assert config['version'] == "1.0"
    assert get_section(config, 'anomaly_model')
    assert get_section(config, 'training_pipeline')
    assert 'saas' in get_section(config, 'benchmarks')


def test_config_missing_file(tmp_path):
    from src.utils.config_loader import load_config

    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "nope.yaml"))


def test_config_missing_keys(tmp_path):
    """Test that a settings file without required sections is rejected."""
    from src.utils.config_loader import load_config

    path = tmp_path / "settings.yaml"
    path.write_text("version: '1.0'\nllm: {}\n")

    with pytest.raises(ConfigurationError) as exc:
        load_config(str(path))
    assert 'anomaly_model' in str(exc.value)


def test_config_round_trip(tmp_path):
    from src.utils.config_loader import get_section, load_config, save_config

    config = load_config()
    config['anomaly_model']['detect_days'] = 14
    path = tmp_path / "nested" / "settings.yaml"
    save_config(str(path), config)

    assert load_config(str(path))['anomaly_model']['detect_days'] == 14
    assert get_section(None, 'anomaly_model') == {}


def test_model_store_revisions():
    """Test that every write bumps the revision and stale writers are refused."""
    from src.storage.model_store import InMemoryModelStore

    store = InMemoryModelStore()
    assert store.get("org_a", "anomalyModel") is None

    payload = {"schema_version": MODEL_SCHEMA_VERSION, "version": "v1"}
    assert store.put("org_a", "anomalyModel", payload, expected_revision=0) == 1
    assert store.put("org_a", "anomalyModel", payload, expected_revision=1) == 2

    stored = store.get("org_a", "anomalyModel")
    assert stored.revision == 2
    assert stored.payload["version"] == "v1"

    with pytest.raises(ModelStoreConflictError):
        store.put("org_a", "anomalyModel", payload, expected_revision=1)

    store.delete("org_a", "anomalyModel")
    assert store.get("org_a", "anomalyModel") is None


def test_migrate_v1_vendor_payload():
    """Test that token-keyed vectors are re-keyed by vocabulary index."""
    from src.storage.model_store import migrate_payload

    payload = {
        "idf": {"aws": 1.2, "web": 0.8},
        "clusters": [{"canonical": "AWS", "centroid": {"web": 0.3, "aws": 0.5}}],
    }

    migrated = migrate_payload("vendorMatcher", payload)

    assert migrated["schema_version"] == MODEL_SCHEMA_VERSION
    assert migrated["vocabulary"] == ["aws", "web"]
    assert migrated["idf"] == {0: 1.2, 1: 0.8}
    assert migrated["clusters"][0]["centroid"] == {1: 0.3, 0: 0.5}


def test_migrate_unknown_model():
    from src.storage.model_store import migrate_payload

    with pytest.raises(ValueError):
        migrate_payload("crystalBall", {})


def test_create_model_store_memory():
    from src.storage.model_store import InMemoryModelStore, TrainingHistory, create_model_store

    store, history = create_model_store("memory")
    assert isinstance(store, InMemoryModelStore)
    assert isinstance(history, TrainingHistory)
    assert store.health_check() is True


def test_training_history_newest_first():
    from src.storage.model_store import TrainingHistory

    history = TrainingHistory()
    start = datetime(2025, 6, 1, 12, 0)
    for i, model_name in enumerate([ModelName.ANOMALY_MODEL, ModelName.VENDOR_MATCHER, ModelName.ANOMALY_MODEL]):
        history.append(ModelTrainingRecord(
            organization_id="org_a",
            model_name=model_name,
            version=f"v{i}",
            trained_at=start + timedelta(hours=i),
            example_count=10,
            success=True,
        ))

    assert [r.version for r in history.list("org_a")] == ["v2", "v1", "v0"]
    assert [r.version for r in history.list("org_a", ModelName.ANOMALY_MODEL)] == ["v2", "v0"]
    assert history.latest("org_a", ModelName.VENDOR_MATCHER).version == "v1"
    assert history.latest("org_b") is None


def test_registry_lru(ledger, store):
    """Test that the least recently used model is evicted first."""
    from src.ml.registry import ModelRegistry

    registry = ModelRegistry(ledger, store, max_size=2)
    first = registry.anomaly("org_a")
    registry.anomaly("org_b")
    assert registry.anomaly("org_a") is first

    registry.anomaly("org_c")
    assert len(registry) == 2
    assert registry.anomaly("org_a") is first

    registry.invalidate("org_a")
    assert registry.anomaly("org_a") is not first


def test_error_hierarchy():
    """Test that every library error can be caught as IntelligenceError."""
    for error in (ConfigurationError, ModelStoreError, LedgerError, ModelNotTrainedError, LLMError):
        assert issubclass(error, IntelligenceError)
    assert issubclass(ModelStoreConflictError, ModelStoreError)
    assert issubclass(UnsanitizedPromptError, LLMError)

    # short training windows are failed outcomes, not exceptions
    assert not hasattr(errors, "InsufficientDataError")
    assert not hasattr(errors, "TrainingError")


def test_versions_strictly_increase():
    from src.ml.versioning import next_version

    versions = [next_version() for _ in range(50)]

    assert versions == sorted(versions)
    assert len(set(versions)) == 50
    assert {len(v) for v in versions} == {len("2025.06.01-120000000000")}


def test_retry_recovers():
    from src.orchestrator.retry_handler import retry_with_exponential_backoff

    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("try again")
        return "ok"

    assert retry_with_exponential_backoff(flaky, 3, 0, 0) == "ok"
    assert len(calls) == 3


def test_retry_exhausted():
    """Test that exhausted retries surface as IntelligenceError."""
    from src.orchestrator.retry_handler import retry_with_exponential_backoff

    def always_fails():
        raise ConnectionError("down")

    with pytest.raises(IntelligenceError):
        retry_with_exponential_backoff(always_fails, 2, 0, 0)


def test_retry_skips_other_errors():
    from src.orchestrator.retry_handler import retry_with_exponential_backoff

    def bad_input():
        raise KeyError("missing")

    with pytest.raises(KeyError):
        retry_with_exponential_backoff(bad_input, 3, 0, 0, retry_on=(ConnectionError,))


def test_llm_cost_calculation():
    """Test LLM cost calculation."""
    from src.tools.llm_client import calculate_cost

    # Claude Haiku 4.5 pricing (0.80 per 1M tokens)
    assert calculate_cost(1_000_000, "anthropic/claude-haiku-4.5") == pytest.approx(0.80)
    # GPT-4o-mini pricing (0.15 per 1M tokens)
    assert calculate_cost(1_000_000, "openai/gpt-4o-mini") == pytest.approx(0.15)
    # Unknown models fall back to the cheapest tier
    assert calculate_cost(1_000_000, "someone/else") == pytest.approx(0.15)


def test_translate_refuses_numbers():
    """Test that a prompt with figures never reaches the API."""
    from src.tools.llm_client import translate_summary

    with patch("src.tools.llm_client.get_client") as get_client:
        with pytest.raises(UnsanitizedPromptError):
            translate_summary("Burn is 80000 a month")
    get_client.assert_not_called()


def test_translate_without_api_key(monkeypatch):
    from src.tools import llm_client

    monkeypatch.setenv("OPENROUTER_API_KEY", "")
    monkeypatch.setattr(llm_client, "_client", None)

    with pytest.raises(LLMError):
        llm_client.translate_summary("Runway is healthy")


def test_translate_with_mocked_client(monkeypatch):
    """Test a successful translation round trip against a mocked client."""
    from src.tools import llm_client

    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        usage=SimpleNamespace(total_tokens=120),
        choices=[SimpleNamespace(message=SimpleNamespace(content="Your runway looks healthy."))],
    )
    monkeypatch.setattr(llm_client, "_client", client)

    summary = llm_client.translate_summary("RUNWAY STATUS: HEALTHY", model="openai/gpt-4o-mini")

    assert summary == "Your runway looks healthy."
    sent = client.chat.completions.create.call_args.kwargs
    assert sent["model"] == "openai/gpt-4o-mini"
    assert sent["messages"][-1]["content"] == "RUNWAY STATUS: HEALTHY"


def test_annotation_fields_only(ledger, add_txn):
    """Test that only annotation fields can be written back to the ledger."""
    txn = add_txn(date(2025, 3, 1), -120.0, vendor="AMZN WEB SERVICES")

    ledger.annotate_transaction(txn.txn_id, vendor_normalized="AWS", is_recurring=True)
    assert ledger.transactions[txn.txn_id].vendor_normalized == "AWS"

    with pytest.raises(LedgerError):
        ledger.annotate_transaction(txn.txn_id, amount=1.0)
    with pytest.raises(LedgerError):
        ledger.annotate_transaction("txn_missing", is_recurring=True)


def _write_fixture(tmp_path, org_id):
    fixture = {
        "organizations": [{"id": org_id, "name": "Acme Analytics", "business_type": "saas"}],
        "transactions": [
            {"txn_id": f"txn_{i}", "organization_id": org_id, "date": f"2025-05-{i + 1:02d}",
             "amount": -150.0, "vendor": "Office Supplies Co"}
            for i in range(3)
        ],
    }
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(fixture))
    return path


def test_load_ledger_from_json(tmp_path, org_id):
    from src.tools.ledger_client import load_ledger_from_json

    ledger = load_ledger_from_json(str(_write_fixture(tmp_path, org_id)))

    assert ledger.get_organization(org_id).business_type == "saas"
    assert len(ledger.get_transactions(org_id)) == 3

    with pytest.raises(LedgerError):
        load_ledger_from_json(str(tmp_path / "missing.json"))


def test_cli_train(tmp_path, capsys, org_id):
    """Test the train command end to end with the in-memory backend."""
    from src.main import main

    path = _write_fixture(tmp_path, org_id)
    code = main(["--ledger", str(path), "--backend", "memory", "train", "--org", org_id, "--model", "anomalyModel"])

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert len(output) == 1
    assert output[0]["model_name"] == "anomalyModel"
    # three transactions are not enough to train
    assert output[0]["success"] is False


def test_cli_missing_ledger(tmp_path, capsys):
    from src.main import main

    code = main(["--ledger", str(tmp_path / "missing.json"), "--backend", "memory",
                 "insights", "--org", "org_acme"])

    assert code == 1
    assert "error" in json.loads(capsys.readouterr().err.strip().splitlines()[-1])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
