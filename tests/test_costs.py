from jobpipe.services.costs import PRICING, calculate_cost, extract_embedding_usage, extract_usage


def test_unknown_models_use_default_pricing() -> None:
    cost = calculate_cost("some-new-model", {"prompt_tokens": 2000, "completion_tokens": 1000}, "job-extraction")

    assert cost["cost"] == {"input_cost": 0.00015, "output_cost": 0.0003, "total_cost": 0.00045}
    assert cost["usage"] == {"prompt_tokens": 2000, "completion_tokens": 1000, "total_tokens": 3000}
    assert cost["timestamp"]


def test_total_tokens_stand_in_for_missing_prompt_tokens() -> None:
    cost = calculate_cost("text-embedding-004", {"total_tokens": 400}, "embedding")

    assert cost["usage"]["prompt_tokens"] == 400
    assert cost["cost"]["output_cost"] == 0
    assert cost["cost"]["input_cost"] == 0.00003


def test_costs_are_rounded_to_eight_places(monkeypatch) -> None:
    monkeypatch.setitem(PRICING, "metered-model", {"input": 0.0123456, "output": 0.0})

    cost = calculate_cost("metered-model", {"prompt_tokens": 1000}, "job-extraction")

    assert cost["cost"] == {"input_cost": 0.00001235, "output_cost": 0.0, "total_cost": 0.00001235}


def test_usage_extraction_ignores_non_integer_values() -> None:
    assert extract_usage({"prompt_tokens": 10, "completion_tokens": "5"}) == {"prompt_tokens": 10}
    assert extract_usage(None) == {}
    assert extract_embedding_usage({"promptTokens": 3}) == {
        "prompt_tokens": 0,
        "completion_tokens": 0,
        "total_tokens": 0,
    }
    assert extract_embedding_usage({"prompt_tokens": 7, "total_tokens": 9})["total_tokens"] == 9
