"""
XOR Training Example
====================

Trains a 2-3-1 network on XOR through the worker protocol: the graph lives
on a worker thread and this script only posts commands and reads replies.

    Y1 = X·W1 + B1
    R1 = relu(Y1)
    Y2 = R1·W2 + B2
    Y  = relu(Y2)
    loss(Y, Expected)

Backend and seed come from GRADGRAPH_* environment variables, e.g.

    GRADGRAPH_BACKEND=numba GRADGRAPH_SEED=3 python examples/train_xor.py
"""

import numpy as np

from gradgraph import GraphConfig, configure_logging
from gradgraph.worker import GraphClient

EPOCHS = 2000
LEARNING_RATE = 0.05
REPORT_EVERY = 200
TIMEOUT = 30.0

X = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=np.float32)
EXPECTED = np.array([[0], [1], [1], [0]], dtype=np.float32)


def build_network(client):
    client.create_node('X', {'width': 2, 'height': 4, 'nodeType': 'input'}, values=X)
    client.create_node('W1', {'width': 3, 'height': 2, 'nodeType': 'train'},
                       initialization='random')
    client.create_node('B1', {'width': 3, 'height': 1, 'nodeType': 'train'},
                       initialization='random')
    client.create_node('Y1', {'width': 3, 'height': 4, 'nodeType': 'intermediate'})
    client.create_node('R1', {'width': 3, 'height': 4, 'nodeType': 'intermediate'})
    client.create_node('W2', {'width': 1, 'height': 3, 'nodeType': 'train'},
                       initialization='random')
    client.create_node('B2', {'width': 1, 'height': 1, 'nodeType': 'train'},
                       initialization='random')
    client.create_node('Y2', {'width': 1, 'height': 4, 'nodeType': 'intermediate'})
    client.create_node('Y', {'width': 1, 'height': 4, 'nodeType': 'output'})
    client.create_node('Expected', {'width': 1, 'height': 4, 'nodeType': 'input'},
                       values=EXPECTED)

    client.multiply_add(x='X', w='W1', b='B1', y='Y1')
    client.relu(x='Y1', y='R1')
    client.multiply_add(x='R1', w='W2', b='B2', y='Y2')
    client.relu(x='Y2', y='Y')
    client.loss(actual='Y', expected='Expected')


def main():
    config = GraphConfig.from_env()
    configure_logging(config.log_level)

    with GraphClient.create(config, timeout=TIMEOUT) as client:
        build_network(client)

        print("Build order:")
        for component in client.get_components_in_build_order().result(TIMEOUT):
            print(f"  [{component.type:9s}] {component.detail}")

        print(f"\nTraining XOR on the {config.backend} backend, lr={LEARNING_RATE}")
        print("=" * 60)
        for epoch in range(EPOCHS):
            client.forward()
            if epoch % REPORT_EVERY == 0:
                loss = client.get_loss().result(TIMEOUT)
                print(f"Epoch {epoch:4d}: loss = {loss:.6f}")
            client.backward_and_add_gradient(LEARNING_RATE)

        client.forward()
        predictions, _ = client.get_values('Y').result(TIMEOUT)
        print(f"\nFinal loss: {client.get_loss().result(TIMEOUT):.6f}")
        for inputs, target, prediction in zip(X, EXPECTED.reshape(-1), predictions):
            print(f"  {inputs.astype(int).tolist()} -> {prediction:.3f} (expected {target:.0f})")

        if client.errors:
            print(f"\n{len(client.errors)} command(s) failed:")
            for error in client.errors:
                print(f"  {error}")


if __name__ == '__main__':
    main()
