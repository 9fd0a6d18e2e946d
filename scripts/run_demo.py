#!/usr/bin/env python3
"""
Run two online training steps on a saved network.

Usage:
    python scripts/run_demo.py [network.json] [output.json]

The script will:
1. Load the network from the given JSON file, exiting with status 1 if the
   file cannot be opened
2. Attach the tanh(3x) activation pair and a learning ratio of 0.3
3. Train twice on input [0.2, 0.8] with target [0.6, 0.4]
4. Print the output and the loss of each step
5. Save the trained network to the output file
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from neuronet.activations import get_activation
from neuronet.serialization import load_from_file, save_to_file

DATA = [0.2, 0.8]
EXPECTED = [0.6, 0.4]
LEARNING_RATIO = 0.3


def main() -> int:
    input_path = sys.argv[1] if len(sys.argv) > 1 else 'models/demo.json'
    output_path = sys.argv[2] if len(sys.argv) > 2 else 'models/demo_trained.json'

    net = load_from_file(input_path)
    if net is None:
        print(f"❌ Error: could not open network file {input_path}")
        return 1

    print(f"✅ Loaded {net}")

    net.set_funcs(*get_activation('tanh3'))
    net.learning_ratio = LEARNING_RATIO
    net.init_learn()

    output = [0.0] * net.output_size
    for step in (1, 2):
        loss = net.adjust_weights(DATA, EXPECTED, output)
        print(f"   - Step {step}: loss {loss:.6f}")

    print(", ".join(str(value) for value in output))

    save_to_file(net, output_path)
    print(f"💾 Saved trained network to {output_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
