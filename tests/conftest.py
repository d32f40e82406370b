"""
Pytest configuration and fixtures for gradgraph tests
"""
import pytest
import numpy as np

from gradgraph import GraphConfig, Graph, create_backend
from gradgraph.worker import GraphClient


XOR_INPUTS = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=np.float32)
XOR_TARGETS = np.array([[0], [1], [1], [0]], dtype=np.float32)

# Fixed starting point: every hidden unit is active for some input
XOR_WEIGHTS = {
    'W1': [[0.5, -0.3, 0.2], [-0.4, 0.6, 0.3]],
    'B1': [[0.1, 0.1, 0.1]],
    'W2': [[0.3], [0.5], [-0.2]],
    'B2': [[0.0]],
}


@pytest.fixture
def config():
    """Deterministic configuration"""
    return GraphConfig(seed=1234)


@pytest.fixture(params=['numpy', 'numba'])
def backend(request, config):
    """Each backend implementation, closed after the test"""
    if request.param == 'numba':
        pytest.importorskip('numba')
    backend = create_backend(request.param, config.replace(backend=request.param))
    yield backend
    backend.close()


@pytest.fixture
def graph(backend):
    """Empty graph on the parametrized backend"""
    graph = Graph(backend=backend)
    yield graph
    graph.close()


def build_xor_graph(graph, weights=None, relu_output=False):
    """
    2-3-1 network for XOR:

        Y1 = X·W1 + B1, R1 = relu(Y1), Y = R1·W2 + B2, loss(Y, Expected)

    With relu_output the last layer is Y2 = R1·W2 + B2, Y = relu(Y2), as in
    examples/train_xor.py.
    """
    weights = weights or XOR_WEIGHTS
    graph.create_node('X', {'width': 2, 'height': 4, 'nodeType': 'input'}, data=XOR_INPUTS)
    graph.create_node('W1', {'width': 3, 'height': 2, 'nodeType': 'train'}, data=weights['W1'])
    graph.create_node('B1', {'width': 3, 'height': 1, 'nodeType': 'train'}, data=weights['B1'])
    graph.create_node('Y1', {'width': 3, 'height': 4, 'nodeType': 'intermediate'})
    graph.create_node('R1', {'width': 3, 'height': 4, 'nodeType': 'intermediate'})
    graph.create_node('W2', {'width': 1, 'height': 3, 'nodeType': 'train'}, data=weights['W2'])
    graph.create_node('B2', {'width': 1, 'height': 1, 'nodeType': 'train'}, data=weights['B2'])
    graph.create_node('Y', {'width': 1, 'height': 4, 'nodeType': 'output'})
    graph.create_node('Expected', {'width': 1, 'height': 4, 'nodeType': 'input'},
                      data=XOR_TARGETS)
    graph.multiply_add(x='X', w='W1', b='B1', y='Y1')
    graph.relu(x='Y1', y='R1')
    if relu_output:
        graph.create_node('Y2', {'width': 1, 'height': 4, 'nodeType': 'intermediate'})
        graph.multiply_add(x='R1', w='W2', b='B2', y='Y2')
        graph.relu(x='Y2', y='Y')
    else:
        graph.multiply_add(x='R1', w='W2', b='B2', y='Y')
    graph.add_loss_pair('Y', 'Expected')
    return graph


@pytest.fixture
def xor_graph(graph):
    """XOR network on the parametrized backend"""
    return build_xor_graph(graph)


@pytest.fixture
def client(config):
    """Running worker client on the numpy backend"""
    with GraphClient.create(config, timeout=10.0) as client:
        yield client
