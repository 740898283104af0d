"""Two sessions racing for the last place of a subgroup on a file-backed database."""

import threading
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import CapacityExceededException
from app.database import Base
from app.repositories.booking_repository import BookingRepository
from app.services.booking_commit_service import BookingCommitService
from app.services.cache_service import CacheService
from app.services.occupancy_counter import OccupancyCounter
from tests.factories.course_builders import SEASON_DAY, create_course, create_school, create_subgroup


@pytest.fixture
def session_factory(tmp_path):
    file_engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'bookings.db'}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(file_engine)
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False, future=True)
    sessions = []

    def _open():
        session = factory()
        sessions.append(session)
        return session

    yield _open
    for session in sessions:
        session.close()
    file_engine.dispose()


def _payload(school_id, course_id, subgroup_id, client_id):
    return {
        "school_id": school_id,
        "lines": [
            {
                "client_id": client_id,
                "course_id": course_id,
                "course_subgroup_id": subgroup_id,
                "date": SEASON_DAY.isoformat(),
            }
        ],
    }


def _commit_service(session):
    return BookingCommitService(session, cache=CacheService.in_memory())


def test_last_place_goes_to_exactly_one_of_two_concurrent_commits(session_factory):
    setup = session_factory()
    school = create_school(setup)
    course = create_course(setup, school, price="100.00")
    subgroup = create_subgroup(setup, course, max_participants=2)
    setup.commit()
    ids = (school.id, course.id, subgroup.id)
    _commit_service(setup).create_booking(_payload(*ids, "already-booked"))

    first_counted = threading.Event()
    second_counted = threading.Event()
    release_first = threading.Event()
    count_active_locked = OccupancyCounter.count_active_locked

    def count_then_hold(counter, subgroup_id, target_date):
        result = count_active_locked(counter, subgroup_id, target_date)
        if not first_counted.is_set():
            first_counted.set()
            release_first.wait(timeout=5)
        else:
            second_counted.set()
        return result

    outcomes = {}

    def book(client_id):
        try:
            _commit_service(session_factory()).create_booking(_payload(*ids, client_id))
            outcomes[client_id] = "booked"
        except CapacityExceededException as exc:
            outcomes[client_id] = exc

    with patch.object(
        OccupancyCounter, "count_active_locked", autospec=True, side_effect=count_then_hold
    ):
        first = threading.Thread(target=book, args=("a",))
        second = threading.Thread(target=book, args=("b",))
        try:
            first.start()
            assert first_counted.wait(timeout=5)
            second.start()
            # while the first commit holds the lock the second cannot count
            second_counted_early = second_counted.wait(timeout=0.5)
        finally:
            release_first.set()
            first.join(timeout=10)
            second.join(timeout=10)

    assert second_counted_early is False
    assert outcomes["a"] == "booked"
    assert isinstance(outcomes["b"], CapacityExceededException)
    assert outcomes["b"].details["occupied"] == 2
    check = session_factory()
    assert BookingRepository(check).count_active_for_subgroup(subgroup.id, SEASON_DAY) == 2
