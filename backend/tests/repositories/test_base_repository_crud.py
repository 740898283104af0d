"""Generic CRUD helpers of BaseRepository, exercised on schools and courses."""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.exceptions import RepositoryException
from app.models.course import Course
from app.models.school import School
from app.repositories.factory import RepositoryFactory
from tests.factories.course_builders import create_course, create_school


class TestBaseRepositoryCrud:
    def test_create_and_get(self, db):
        repository = RepositoryFactory.create_base_repository(db, School)

        school = repository.create(name="Alpine School", currency="CHF")

        assert school.id is not None
        assert repository.get_by_id(school.id).name == "Alpine School"
        assert repository.get_by_id("missing") is None

    def test_update_only_known_fields(self, db):
        repository = RepositoryFactory.create_base_repository(db, School)
        school = create_school(db)

        updated = repository.update(school.id, name="Renamed", not_a_column="ignored")

        assert updated.name == "Renamed"
        assert not hasattr(updated, "not_a_column")
        assert repository.update("missing", name="x") is None

    def test_find_count_exists(self, db):
        school = create_school(db)
        create_course(db, school, name="Morning group")
        create_course(db, school, name="Afternoon group")
        repository = RepositoryFactory.create_base_repository(db, Course)

        assert repository.count(school_id=school.id) == 2
        assert repository.exists(name="Morning group") is True
        assert repository.exists(name="Night group") is False
        assert [c.name for c in repository.find_by(name="Afternoon group")] == ["Afternoon group"]
        assert repository.find_one_by(name="Night group") is None
        assert len(repository.get_all(limit=1)) == 1

    def test_lock_by_id(self, db):
        school = create_school(db)
        repository = RepositoryFactory.create_base_repository(db, School)

        assert repository.get_by_id_for_update(school.id) is school


def test_database_errors_become_repository_exceptions():
    db = Mock(spec=Session)
    db.query.side_effect = OperationalError("SELECT 1", {}, Exception("connection lost"))
    repository = RepositoryFactory.create_base_repository(db, School)

    with pytest.raises(RepositoryException):
        repository.find_by(name="any")
