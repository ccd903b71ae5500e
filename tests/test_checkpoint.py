import pytest
import torch

from rosadj import (BufferEmptyError, BufferOverflowError, CheckpointKind,
                    ContinuousSnapshot, DiscreteSnapshot, TrajectoryBuffer)


def _discrete(t, h=0.1, s=2, n=3):
    return DiscreteSnapshot(t=t, h=h,
                            ystage=torch.zeros(s, n, dtype=torch.float64),
                            k=torch.zeros(s, n, dtype=torch.float64))


def _continuous(t, h=0.1, n=3):
    z = torch.zeros(n, dtype=torch.float64)
    return ContinuousSnapshot(t=t, h=h, y=z, dy=z, d2y=z)


class TestTrajectoryBuffer:
    def test_lifo_order(self):
        buf = TrajectoryBuffer(CheckpointKind.DISCRETE)
        for i in range(5):
            buf.push(_discrete(t=0.1 * i, h=0.01 * (i + 1)))
        assert len(buf) == 5

        # interleave pushes and pops; every pop returns the latest live push
        popped = buf.pop()
        assert popped.t == pytest.approx(0.4)
        assert popped.h == pytest.approx(0.05)
        buf.push(_discrete(t=9.0, h=9.0))
        assert buf.pop().t == 9.0
        assert [buf.pop().t for _ in range(4)] == pytest.approx(
            [0.3, 0.2, 0.1, 0.0])
        assert len(buf) == 0

    def test_overflow_is_fatal(self):
        buf = TrajectoryBuffer(CheckpointKind.CONTINUOUS, capacity=2)
        buf.push(_continuous(0.0))
        buf.push(_continuous(1.0))
        with pytest.raises(BufferOverflowError):
            buf.push(_continuous(2.0))
        assert len(buf) == 2

    def test_pop_empty_is_fatal(self):
        buf = TrajectoryBuffer(CheckpointKind.DISCRETE)
        with pytest.raises(BufferEmptyError):
            buf.pop()
        with pytest.raises(BufferEmptyError):
            buf.peek()

    def test_shapes_never_mix(self):
        dbuf = TrajectoryBuffer(CheckpointKind.DISCRETE)
        cbuf = TrajectoryBuffer(CheckpointKind.CONTINUOUS)
        with pytest.raises(TypeError):
            dbuf.push(_continuous(0.0))
        with pytest.raises(TypeError):
            cbuf.push(_discrete(0.0))

    def test_read_only_access_is_oldest_first(self):
        buf = TrajectoryBuffer(CheckpointKind.CONTINUOUS)
        for t in (0.0, 0.5, 1.0):
            buf.push(_continuous(t))
        assert buf.times() == [0.0, 0.5, 1.0]
        assert buf[0].t == 0.0
        assert buf.peek().t == 1.0
        assert len(buf) == 3          # peek does not consume

    def test_clear(self):
        buf = TrajectoryBuffer(CheckpointKind.CONTINUOUS)
        buf.push(_continuous(0.0))
        buf.clear()
        assert len(buf) == 0
