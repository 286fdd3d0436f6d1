# examples/digits_classification.py
"""
Digit Classification with clear_sequential

Builds a small convolutional network, trains it on handwritten digits,
evaluates it, saves it to the text model format and reloads it to check
that the reloaded copy predicts exactly the same thing.

Data comes either from corpus files in --data-dir
(trainingImages, trainLabels, testingImages, testLabels) or, when no
directory is given, from the scikit-learn 8x8 digits dataset.

Main steps:
1. Load the images and one-hot labels
2. Min-max normalize the images
3. Define conv -> pool -> dense with Sequential's add_* API
4. Train with MiniBatch or Adam
5. Evaluate, save, reload, compare
6. Plot the training history
"""

import argparse
import logging
import os
import sys
import time

import numpy as np

from clear_sequential import Adam, MiniBatch, Sequential
from clear_sequential.corpus import read_images_file, read_labels_file
from clear_sequential.matrix import min_max_normalize

# --- Configuration ---
EPOCHS = 10
BATCH_SIZE = 32
LEARN_RATE = 0.001
OPTIMIZER = "adam"
MODEL_PATH = "digits_model.txt"
NUM_CLASSES = 10


def load_corpus(data_dir):
    print(f"Loading corpus files from {data_dir}...")
    x_train = read_images_file(os.path.join(data_dir, "trainingImages"))
    y_train = read_labels_file(os.path.join(data_dir, "trainLabels"), NUM_CLASSES)
    x_test = read_images_file(os.path.join(data_dir, "testingImages"))
    y_test = read_labels_file(os.path.join(data_dir, "testLabels"), NUM_CLASSES)
    return (x_train, y_train), (x_test, y_test)


def load_sklearn_digits():
    try:
        from sklearn.datasets import load_digits
        from sklearn.model_selection import train_test_split
    except ImportError:
        print("Error: scikit-learn is required. pip install scikit-learn")
        sys.exit(1)
    print("Loading Scikit-learn digits dataset...")
    digits = load_digits()
    X = digits.images.reshape(-1, 1, 8, 8).astype(float)
    y = np.eye(NUM_CLASSES)[digits.target]
    X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=0.2, random_state=42,
                                                        stratify=digits.target)
    print(f"Split into Train: {X_train.shape}, Test: {X_test.shape}")
    return (X_train, y_train), (X_test, y_test)


def build_model(input_shape, optimizer):
    model = Sequential()
    # (1, 8, 8) -> conv 3x3 -> (8, 6, 6) -> pool 2x2 -> (8, 3, 3) -> dense 10
    model.add_conv(8, (3, 3), input_shape=input_shape)
    model.add_max_pool((2, 2))
    model.add_dense(NUM_CLASSES)
    model.compile(loss="crossEntropy", optimizer=optimizer, metrics=["accuracy"])
    return model


def plot_history(history):
    import matplotlib.pyplot as plt

    epochs = range(1, len(history["loss"]) + 1)
    plt.figure(figsize=(12, 5))
    plt.subplot(1, 2, 1)
    plt.plot(epochs, history["loss"], label='Training Loss', marker='o')
    plt.xlabel('Epoch')
    plt.ylabel('Loss')
    plt.legend()
    plt.title('Training Loss over Epochs')
    plt.grid(True)

    plt.subplot(1, 2, 2)
    plt.plot(epochs, history["accuracy"], label='Training Accuracy', color='orange', marker='o')
    plt.xlabel('Epoch')
    plt.ylabel('Accuracy')
    plt.ylim(0, 1.05)
    plt.legend()
    plt.title('Training Accuracy over Epochs')
    plt.grid(True)

    plt.tight_layout()
    plt.show()


def main():
    parser = argparse.ArgumentParser(description='Digit classification with a convolutional network')
    parser.add_argument('--epochs', type=int, default=EPOCHS)
    parser.add_argument('--batch-size', type=int, default=BATCH_SIZE)
    parser.add_argument('--optimizer', choices=['adam', 'mini'], default=OPTIMIZER)
    parser.add_argument('--learn-rate', type=float, default=LEARN_RATE)
    parser.add_argument('--data-dir', default=None,
                        help='Directory with corpus files; the sklearn digits are used when omitted')
    parser.add_argument('--model-path', default=MODEL_PATH)
    parser.add_argument('--log-level', default='WARNING')
    parser.add_argument('--no-plot', action='store_true', help='Skip the matplotlib history plot')
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper()),
                        format='%(asctime)s - %(levelname)s - %(message)s')

    if args.data_dir:
        (x_train, y_train), (x_test, y_test) = load_corpus(args.data_dir)
    else:
        (x_train, y_train), (x_test, y_test) = load_sklearn_digits()

    min_max_normalize(x_train)
    min_max_normalize(x_test)

    optimizer = Adam(alpha=args.learn_rate) if args.optimizer == 'adam' else MiniBatch(learn_rate=args.learn_rate)
    print("\nInitializing Network")
    model = build_model(x_train.shape[1:], optimizer)
    print(model.summary())

    print("\n--- Starting Training ---")
    start = time.time()
    history = model.fit(x_train, y_train, batch_size=args.batch_size, epochs=args.epochs)
    print(f"Total Training Time: {time.time() - start:.2f}s")

    results = model.evaluate(x_test, y_test)
    print(f"\nTest Loss: {results['loss']:.4f}")
    print(f"Test Accuracy: {results['accuracy'] * 100:.2f}%")

    model.save(args.model_path)
    reloaded = Sequential.load(args.model_path)
    same = np.array_equal(model.predict(x_test[:10]), reloaded.predict(x_test[:10]))
    print(f"Saved to {args.model_path}; reloaded model gives identical predictions: {same}")

    predictions = np.argmax(model.predict(x_test[:10]), axis=1)
    print("\nExample Predictions (first 10 test samples):")
    print(f"  Predicted: {predictions}")
    print(f"  Actual:    {np.argmax(y_test[:10], axis=1)}")

    if not args.no_plot:
        plot_history(history)


if __name__ == "__main__":
    main()
