# backend/tests/unit/test_base_service_logic.py
"""
Unit tests for BaseService business logic.

These tests isolate the business logic from database and external dependencies
using mocks to ensure we're testing only the service logic.
"""

from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ServiceException
from app.services.base import BaseService


class TestBaseServiceInitialization:
    """Test BaseService initialization and properties."""

    def test_initialization_with_db_only(self):
        mock_db = Mock(spec=Session)

        service = BaseService(mock_db)

        assert service.db == mock_db
        assert service.cache is None
        assert service.logger is not None

    def test_logger_uses_class_name(self):
        """Test logger is named after the service class."""
        mock_db = Mock(spec=Session)

        class CustomService(BaseService):
            pass

        service = CustomService(mock_db)

        assert service.logger.name == "CustomService"


class TestTransactionManagement:
    """Test transaction management logic."""

    def test_transaction_context_success(self):
        mock_db = Mock(spec=Session)
        service = BaseService(mock_db)

        with service.transaction() as session:
            assert session == mock_db

        mock_db.commit.assert_called_once()
        mock_db.rollback.assert_not_called()

    def test_transaction_context_with_sqlalchemy_error(self):
        """SQLAlchemy errors roll back and surface as ServiceException."""
        mock_db = Mock(spec=Session)
        service = BaseService(mock_db)

        with pytest.raises(ServiceException) as exc_info:
            with service.transaction():
                raise SQLAlchemyError("Database connection lost")

        mock_db.rollback.assert_called_once()
        mock_db.commit.assert_not_called()
        assert "Database operation failed" in str(exc_info.value)

    def test_transaction_context_with_domain_error(self):
        """Other errors roll back and propagate unchanged."""
        mock_db = Mock(spec=Session)
        service = BaseService(mock_db)

        with pytest.raises(ValueError, match="Business logic error"):
            with service.transaction():
                raise ValueError("Business logic error")

        mock_db.rollback.assert_called_once()
        mock_db.commit.assert_not_called()


class TestPerformanceMonitoring:
    """Test performance monitoring functionality."""

    def test_record_metric_success_and_failure(self):
        class MetricsSampleService(BaseService):
            pass

        service = MetricsSampleService(Mock(spec=Session))
        service.reset_metrics()

        service._record_metric("resolve", 0.1, success=True)
        service._record_metric("resolve", 0.2, success=False)
        service._record_metric("resolve", 0.15, success=True)

        metrics = service.get_metrics()["resolve"]
        assert metrics["count"] == 3
        assert metrics["avg_time"] == pytest.approx(0.15, rel=1e-9)
        assert metrics["success_rate"] == pytest.approx(0.667, rel=0.01)
        assert metrics["failure_count"] == 1

    def test_measure_operation_records_and_reraises(self):
        class MeasuredService(BaseService):
            @BaseService.measure_operation("explode")
            def explode(self):
                raise RuntimeError("boom")

            @BaseService.measure_operation("answer")
            def answer(self):
                return 42

        service = MeasuredService(Mock(spec=Session))
        service.reset_metrics()

        with patch("app.services.base.prometheus_metrics") as mock_metrics:
            assert service.answer() == 42
            with pytest.raises(RuntimeError):
                service.explode()

        metrics = service.get_metrics()
        assert metrics["answer"]["success_count"] == 1
        assert metrics["explode"]["failure_count"] == 1

        statuses = [c.kwargs["status"] for c in mock_metrics.record_service_operation.call_args_list]
        assert statuses == ["success", "error"]
        error_call = mock_metrics.record_service_operation.call_args_list[1]
        assert error_call.kwargs["error_type"] == "RuntimeError"
        assert error_call.kwargs["service"] == "MeasuredService"

    def test_measure_operation_marks_function(self):
        class MarkedService(BaseService):
            @BaseService.measure_operation("marked")
            def marked(self):
                return None

        assert MarkedService.marked._is_measured is True
        assert MarkedService.marked._operation_name == "marked"

    def test_slow_operation_logging(self):
        class SlowService(BaseService):
            @BaseService.measure_operation("slow_query")
            def slow_query(self):
                return "done"

        service = SlowService(Mock(spec=Session))

        with patch.object(settings, "slow_operation_threshold_seconds", -1.0), patch.object(
            service.logger, "warning"
        ) as mock_warning:
            service.slow_query()

        mock_warning.assert_called_once()
        message = mock_warning.call_args[0][0]
        assert "Slow operation detected" in message
        assert "slow_query took" in message
