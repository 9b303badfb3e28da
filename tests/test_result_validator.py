from skillsmith.agent.state import ExecutionOutcome, Pattern, PatternCategory, PatternResult, ValidationMode
from skillsmith.validation.result_validator import ResultValidator, primary_pattern, render_feedback, update_history


def _pattern(name, category=PatternCategory.OTHER):
    return Pattern(
        name=name,
        import_statement="import demo_lib",
        code_body=f"demo_lib.{name.lower().replace(' ', '_')}()",
        expected_behavior_summary="",
        category=category,
    )


def _result(pattern, passed):
    if passed:
        outcome = ExecutionOutcome(0, f"✓ Test passed: {pattern.name}\n", "", 0.1)
    else:
        outcome = ExecutionOutcome(1, "", "Traceback...\nAttributeError: no such thing", 0.1)
    return PatternResult(pattern=pattern, outcome=outcome)


def test_primary_pattern_prefers_basic_usage():
    patterns = [_pattern("Config"), _pattern("Basic", PatternCategory.BASIC_USAGE)]
    assert primary_pattern(patterns).name == "Basic"
    assert primary_pattern([_pattern("A"), _pattern("B")]).name == "A"
    assert primary_pattern([]) is None


def test_zero_patterns_pass_in_every_mode():
    for mode in ValidationMode:
        verdict, history = ResultValidator(mode).validate([])
        assert verdict.overall_pass
        assert verdict.patterns_tested == 0
        assert verdict.feedback is None
        assert history == {}


def test_exhaustive_requires_every_pattern():
    patterns = [_pattern(name) for name in ("A", "B", "C")]
    validator = ResultValidator(ValidationMode.EXHAUSTIVE)
    verdict, _ = validator.validate([_result(patterns[0], True), _result(patterns[1], False), _result(patterns[2], True)])
    assert not verdict.overall_pass
    assert verdict.patterns_passed == 2
    assert verdict.patterns_failed == 1
    assert verdict.patterns_failed_with_reason[0][0] == "B"
    assert "AttributeError" in verdict.patterns_failed_with_reason[0][1]


def test_feedback_lists_passed_and_failed_patterns():
    a, b = _pattern("Keep me"), _pattern("Fix me")
    verdict, _ = ResultValidator().validate([_result(a, True), _result(b, False)])
    feedback = verdict.feedback
    assert feedback.startswith("SKILL.md PATCH REQUIRED")
    assert "- Keep me" in feedback
    assert "Pattern: Fix me" in feedback
    assert "AttributeError: no such thing" in feedback
    assert "demo_lib.fix_me()" in feedback


def test_minimal_selects_primary_first_and_stops_early():
    other, basic, extra = _pattern("Other"), _pattern("Basic", PatternCategory.BASIC_USAGE), _pattern("Extra")
    validator = ResultValidator(ValidationMode.MINIMAL)
    assert [pattern.name for pattern in validator.select([other, basic, extra])] == ["Basic", "Other", "Extra"]

    assert validator.can_stop([_result(basic, False)])
    assert not validator.can_stop([_result(basic, True)])
    assert not validator.can_stop([_result(basic, True), _result(other, False)])
    assert validator.can_stop([_result(basic, True), _result(other, False), _result(extra, True)])


def test_minimal_passes_with_primary_and_one_other():
    basic, other, extra = _pattern("Basic", PatternCategory.BASIC_USAGE), _pattern("Other"), _pattern("Extra")
    validator = ResultValidator(ValidationMode.MINIMAL)

    verdict, _ = validator.validate([_result(basic, True), _result(other, False), _result(extra, True)])
    assert verdict.overall_pass
    assert verdict.required == ("Basic", "Extra")

    verdict, _ = validator.validate([_result(basic, False)])
    assert not verdict.overall_pass

    verdict, _ = validator.validate([_result(basic, True)])
    assert verdict.overall_pass
    assert verdict.required == ("Basic",)


def test_history_counts_consecutive_failures():
    a, b = _pattern("A"), _pattern("B")
    history = update_history({"A": 1, "B": 4}, [_result(a, False), _result(b, True)])
    assert history == {"A": 2}


def test_adaptive_waives_patterns_that_keep_failing():
    basic = _pattern("Basic", PatternCategory.BASIC_USAGE)
    flaky = _pattern("Flaky")
    validator = ResultValidator(ValidationMode.ADAPTIVE, adaptive_failure_threshold=2)
    results = [_result(basic, True), _result(flaky, False)]

    verdict, history = validator.validate(results, {})
    assert not verdict.overall_pass
    assert history == {"Flaky": 1}

    verdict, history = validator.validate(results, history)
    assert verdict.overall_pass
    assert verdict.required == ("Basic",)
    assert history == {"Flaky": 2}


def test_adaptive_falls_back_to_minimal_when_everything_is_waived():
    basic, other = _pattern("Basic", PatternCategory.BASIC_USAGE), _pattern("Other")
    validator = ResultValidator(ValidationMode.ADAPTIVE, adaptive_failure_threshold=1)
    verdict, _ = validator.validate([_result(basic, False), _result(other, False)], {})
    assert not verdict.overall_pass
    assert verdict.required == ("Basic", "Other")


def test_feedback_for_a_runtime_without_a_registry_entry():
    pattern = Pattern(
        name="Ownership",
        import_statement="use demo::Thing;",
        code_body="let t = Thing::new();",
        expected_behavior_summary="",
        runtime="rust",
    )
    result = PatternResult(pattern=pattern, error="probe generation failed: no runtime")
    verdict, _ = ResultValidator().validate([result])

    feedback = render_feedback([result], verdict)
    assert "```rust\nuse demo::Thing;" in feedback
    assert "probe generation failed: no runtime" in feedback
