"""
Tests for graph operations: shape contracts, forward and backward passes
"""
import pytest
import numpy as np

from gradgraph import DimensionMismatchError
from gradgraph.nn import FullyConnected, MatrixMultiply, MultiplyAdd, OperationKind, Relu


def _node(graph, name, rows, node_type='intermediate'):
    rows = np.asarray(rows, dtype=np.float32)
    return graph.create_node(
        name, {'width': rows.shape[1], 'height': rows.shape[0], 'nodeType': node_type},
        data=rows)


class TestMatrixMultiply:
    """Test Y = W·X"""

    def test_identity_forward(self, graph):
        """W = I2, X = [[3], [4]] gives Y = [[3], [4]]"""
        graph.create_node('W', {'width': 2, 'height': 2, 'nodeType': 'train'},
                          initialization='identity')
        _node(graph, 'X', [[3], [4]], 'input')
        graph.create_node('Y', {'width': 1, 'height': 2, 'nodeType': 'output'})
        op = graph.multiply(x='X', w='W', y='Y')
        assert isinstance(op, MatrixMultiply)

        graph.forward()
        values, _ = graph.get_values('Y')
        np.testing.assert_allclose(values, [3, 4])

    def test_backward_accumulates(self, graph):
        """dW += dY·Xᵗ and dX += Wᵗ·dY"""
        w = _node(graph, 'W', [[1, 2], [3, 4]], 'train')
        x = _node(graph, 'X', [[1], [-1]], 'input')
        y = graph.create_node('Y', {'width': 1, 'height': 2, 'nodeType': 'output'})
        op = graph.multiply(x='X', w='W', y='Y')

        y.gradient.write([1, 2])
        w.gradient.write([10, 10, 10, 10])
        op.backward()

        np.testing.assert_allclose(w.gradient.read(), [11, 9, 12, 8])
        np.testing.assert_allclose(x.gradient.read(), [7, 10])

    @pytest.mark.parametrize('w_shape,x_shape,y_shape,message', [
        ((2, 3), (2, 1), (2, 1), "W width"),
        ((2, 2), (2, 1), (3, 1), "W height"),
        ((2, 2), (2, 2), (2, 1), "X width"),
    ])
    def test_shape_contract(self, graph, w_shape, x_shape, y_shape, message):
        for name, (height, width) in (('W', w_shape), ('X', x_shape), ('Y', y_shape)):
            graph.create_node(name, {'width': width, 'height': height})
        with pytest.raises(DimensionMismatchError, match=message):
            graph.multiply(x='X', w='W', y='Y')

    def test_describe(self, graph):
        graph.create_node('W', {'width': 1, 'height': 1})
        graph.create_node('X', {'width': 1, 'height': 1})
        graph.create_node('Y', {'width': 1, 'height': 1})
        op = graph.multiply(x='X', w='W', y='Y')
        assert op.describe() == "Y = W * X"
        assert op.name == "Multiply:Y"


class TestMultiplyAdd:
    """Test Y = X·W + B"""

    def test_forward(self, graph):
        """X = [[1, 2]], W = I2, B = [[5, 6]] gives Y = [[6, 8]]"""
        _node(graph, 'X', [[1, 2]], 'input')
        graph.create_node('W', {'width': 2, 'height': 2, 'nodeType': 'train'},
                          initialization='identity')
        _node(graph, 'B', [[5, 6]], 'train')
        graph.create_node('Y', {'width': 2, 'height': 1, 'nodeType': 'output'})
        op = graph.multiply_add(x='X', w='W', b='B', y='Y')
        assert isinstance(op, FullyConnected)

        graph.forward()
        np.testing.assert_allclose(graph.get_values('Y')[0], [6, 8])

    def test_backward(self, graph):
        """dW = Xᵗ·dY, dB = colSum(dY), dX = dY·Wᵗ, all overwritten"""
        x_host = np.array([[1, 2], [3, 4], [5, 6]], dtype=np.float32)
        w_host = np.array([[1, -1, 0], [2, 0, 1]], dtype=np.float32)
        dy_host = np.array([[1, 0, 2], [0, 1, 1], [-1, 2, 0]], dtype=np.float32)
        x = _node(graph, 'X', x_host, 'input')
        w = _node(graph, 'W', w_host, 'train')
        b = _node(graph, 'B', [[0, 0, 0]], 'train')
        y = graph.create_node('Y', {'width': 3, 'height': 3, 'nodeType': 'output'})
        op = graph.multiply_add(x='X', w='W', b='B', y='Y')

        w.gradient.write(np.full(6, 100.0))
        y.gradient.write(dy_host)
        op.backward()

        np.testing.assert_allclose(w.gradient.read().reshape(2, 3), x_host.T @ dy_host)
        np.testing.assert_allclose(b.gradient.read(), dy_host.sum(axis=0))
        np.testing.assert_allclose(x.gradient.read().reshape(3, 2), dy_host @ w_host.T)

    def test_bias_must_be_single_row(self, graph):
        graph.create_node('X', {'width': 2, 'height': 2})
        graph.create_node('W', {'width': 2, 'height': 2})
        graph.create_node('B', {'width': 2, 'height': 2})
        graph.create_node('Y', {'width': 2, 'height': 2})
        with pytest.raises(DimensionMismatchError, match=r"B height \(2\) must equal 1"):
            graph.multiply_add(x='X', w='W', b='B', y='Y')

    def test_shape_message_names_dimensions(self, graph):
        graph.create_node('X', {'width': 2, 'height': 1})
        graph.create_node('W', {'width': 3, 'height': 2})
        graph.create_node('B', {'width': 2, 'height': 1})
        graph.create_node('Y', {'width': 3, 'height': 1})
        with pytest.raises(DimensionMismatchError, match=r"B width \(2\) must equal Y width \(3\)"):
            graph.multiply_add(x='X', w='W', b='B', y='Y')

    def test_describe(self, graph):
        for name in ('X', 'W', 'B', 'Y'):
            graph.create_node(name, {'width': 1, 'height': 1})
        op = graph.multiply_add(x='X', w='W', b='B', y='Y')
        assert op.describe() == "Y = X * W + B"
        assert MultiplyAdd.kind is OperationKind.MULTIPLY_ADD


class TestRelu:
    """Test Y = max(0, X)"""

    def test_forward_and_backward(self, graph):
        """X = [2, -1] gives Y = [2, 0]; dY = [1, 1] gives dX = [1, 0]"""
        x = _node(graph, 'X', [[2, -1]], 'input')
        y = graph.create_node('Y', {'width': 2, 'height': 1, 'nodeType': 'output'})
        op = graph.relu(x='X', y='Y')
        assert isinstance(op, Relu)

        graph.forward()
        np.testing.assert_array_equal(y.value.read(), [2, 0])

        y.gradient.write([1, 1])
        op.backward()
        np.testing.assert_array_equal(x.gradient.read(), [1, 0])

    def test_shape_contract(self, graph):
        graph.create_node('X', {'width': 2, 'height': 1})
        graph.create_node('Y', {'width': 1, 'height': 2})
        with pytest.raises(DimensionMismatchError):
            graph.relu(x='X', y='Y')


class TestLoss:
    """Test loss seeding"""

    def test_gradient_and_value(self, graph):
        actual = _node(graph, 'A', [[1, 2, 3]], 'output')
        _node(graph, 'E', [[1, 0, 5]], 'input')
        loss = graph.add_loss_pair('A', 'E')

        loss.apply()
        np.testing.assert_allclose(actual.gradient.read(), [0, 2, -2])
        assert loss.value() == pytest.approx(4.0)
        assert loss.describe() == "loss(A, E)"

    def test_shape_mismatch(self, graph):
        graph.create_node('A', {'width': 2, 'height': 1})
        graph.create_node('E', {'width': 1, 'height': 2})
        with pytest.raises(DimensionMismatchError):
            graph.add_loss_pair('A', 'E')
