"""Tests for task priority ordering."""

from conftest import make_task

from batch_controller.services.task_priority import sort_tasks_by_priority


class TestSortTasksByPriority:
    """Tests for stable descending priority ordering."""

    def test_descending_order(self):
        """Test that higher priority tasks come first."""
        tasks = [make_task(f"t{i}", priority=p) for i, p in enumerate([1, 5, 5, 2])]
        ordered = sort_tasks_by_priority(tasks)
        assert [t.priority for t in ordered] == [5, 5, 2, 1]

    def test_equal_priorities_keep_declaration_order(self):
        """Test that ties preserve the input order."""
        tasks = [make_task(f"t{i}", priority=p) for i, p in enumerate([1, 5, 5, 2])]
        ordered = sort_tasks_by_priority(tasks)
        assert [t.name for t in ordered] == ["t1", "t2", "t3", "t0"]

    def test_input_not_mutated(self):
        """Test that sorting returns a new list."""
        tasks = [make_task("a", priority=0), make_task("b", priority=9)]
        sort_tasks_by_priority(tasks)
        assert [t.name for t in tasks] == ["a", "b"]

    def test_negative_priorities(self):
        """Test that negative priorities sort after zero."""
        tasks = [make_task("low", priority=-1), make_task("none", priority=0)]
        assert [t.name for t in sort_tasks_by_priority(tasks)] == ["none", "low"]
