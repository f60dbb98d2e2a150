"""Tests for the solver_logger module."""

import pytest

from nksolvers.solver_logger import (
    IterationEvent,
    SolverLogger,
    resolve_logger,
)


class TestIterationEvent:
    """Test IterationEvent record."""

    def test_event_creation(self):
        event = IterationEvent(solver="nsoli", iteration=2,
                               residual_norm=1)
        assert event.residual_norm == 1.0
        assert isinstance(event.residual_norm, float)
        assert event.metadata == {}

    def test_event_is_frozen(self):
        event = IterationEvent(solver="nsoli", iteration=0,
                               residual_norm=1.0)
        with pytest.raises(AttributeError):
            event.iteration = 3

    def test_solver_must_be_string(self):
        with pytest.raises(TypeError):
            IterationEvent(solver=None, iteration=0, residual_norm=1.0)


class TestSolverLogger:
    """Test SolverLogger class."""

    def test_initialization_default(self):
        logger = SolverLogger()
        assert logger.verbosity == "default"
        assert logger.events == []

    def test_invalid_verbosity(self):
        with pytest.raises(ValueError, match="verbosity"):
            SolverLogger(verbosity="loud")

    def test_record_and_filter(self):
        logger = SolverLogger()
        logger.record("nsoli", 0, 2.0)
        logger.record("gmres", 1, 0.5, eta=0.1)
        logger.record("nsoli", 1, 1.0, eta=0.1)
        assert len(logger.get_events()) == 3
        assert [e.iteration for e in logger.get_events("nsoli")] == [0, 1]
        assert list(logger.get_residual_history("nsoli")) == [2.0, 1.0]
        assert logger.get_events("gmres")[0].metadata == {"eta": 0.1}

    def test_empty_solver_rejected(self):
        with pytest.raises(ValueError):
            SolverLogger().record("", 0, 1.0)

    def test_default_is_silent(self, capsys):
        logger = SolverLogger()
        logger.record("nsoli", 0, 1.0)
        logger.note("nsoli", "hello")
        assert capsys.readouterr().out == ""

    def test_verbose_hides_inner_solver(self, capsys):
        logger = SolverLogger("verbose")
        logger.record("nsoli", 1, 0.25, step_reductions=1)
        logger.record("gmres", 1, 0.5)
        logger.note("nsoli", "GMRES stalled")
        out = capsys.readouterr().out
        assert "nsoli it 1: ||F|| = 2.500000e-01, step_reductions=1" in out
        assert "gmres it" not in out
        assert "nsoli: GMRES stalled" in out

    def test_debug_shows_everything(self, capsys):
        logger = SolverLogger("debug")
        logger.record("gmres", 2, 0.5, eta=0.01)
        logger.note("ptcsol", "message")
        out = capsys.readouterr().out
        assert "[DEBUG] gmres it 2: ||F|| = 5.000000e-01, eta=1.000e-02" \
            in out
        assert "[DEBUG] ptcsol: message" in out

    def test_print_summary_default_only(self, capsys):
        logger = SolverLogger()
        logger.record("nsoli", 0, 1.0)
        logger.record("nsoli", 1, 0.1)
        logger.print_summary()
        out = capsys.readouterr().out
        assert "Iteration Summary" in out
        assert "nsoli: 2 records, final ||F|| = 1.000000e-01" in out

        verbose = SolverLogger("verbose")
        verbose.print_summary()
        assert capsys.readouterr().out == ""

    def test_print_summary_empty(self, capsys):
        SolverLogger().print_summary()
        assert capsys.readouterr().out == ""


def test_resolve_logger():
    assert resolve_logger(None) is None
    logger = SolverLogger()
    assert resolve_logger(logger) is logger
    built = resolve_logger("debug")
    assert isinstance(built, SolverLogger)
    assert built.verbosity == "debug"
    with pytest.raises(ValueError):
        resolve_logger("chatty")
