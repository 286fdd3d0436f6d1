"""
test_serialization.py
~~~~~~~~~~~~~~~~~~~~~

Unit tests for the text model format.
"""

import numpy as np
import pytest

from clear_sequential import Adam, MiniBatch, Sequential
from clear_sequential.exceptions import InvalidNetworkFormatError, InvalidOperationError
from clear_sequential.losses import CrossEntropy, MeanSquaredError
from clear_sequential.serialization import network_from_text, network_to_text

IDENTITY_MODEL = """Inshape: 1 1 2
dense -n 2
1.0 0.0
0.0 1.0
0.0 0.0
softmax
meanSquaredError
mini 0.5
metrics:
"""


def model_text(*layer_lines, tail="meanSquaredError\nmini 0.1\nmetrics:\n"):
    return "Inshape: 1 1 3\n" + "".join(line + "\n" for line in layer_lines) + tail


@pytest.mark.unit
class TestWriter:
    """network_to_text output."""

    def test_layout(self, conv_network):
        """Test the header, layer lines and trailer."""
        lines = network_to_text(conv_network).splitlines()
        assert lines[0] == "Inshape: 1 4 4"
        assert lines[1] == "conv -n 2 -d 2 2 -s 1 1"
        assert "relu" in lines
        assert "maxpool -d 2 2 -s 1 1" in lines
        assert "dense -n 3" in lines
        assert lines[-4] == "softmax"
        assert lines[-3] == "crossEntropy"
        assert lines[-2].startswith("adam ")
        assert lines[-1] == "metrics: accuracy"

    def test_uncompiled_network(self):
        """Test saving before compile is an invalid operation."""
        net = Sequential()
        net.add_dense(2, input_shape=(1, 1, 3))
        with pytest.raises(InvalidOperationError):
            network_to_text(net)


@pytest.mark.unit
class TestRoundTrip:
    """Save then load."""

    def test_identical_predictions(self, conv_network, image_data):
        """Test a reloaded network computes exactly the same outputs."""
        x, y = image_data
        conv_network.fit(x, y, batch_size=4, epochs=1, verbose=False)
        reloaded = network_from_text(network_to_text(conv_network))
        assert np.array_equal(conv_network.predict(x), reloaded.predict(x))

    def test_file_round_trip(self, tmp_path, image_data):
        """Test save/load through a file keeps layers, loss, optimizer and metrics."""
        x, _ = image_data
        net = Sequential()
        net.add_dense(5, input_shape=(1, 4, 4), activation="sigmoid")
        net.add_dense(3)
        net.compile(loss="meanSquaredError", optimizer=MiniBatch(0.05), metrics=["accuracy"])
        path = tmp_path / "model.txt"
        net.save(str(path))

        loaded = Sequential.load(str(path))
        assert [l.kind for l in loaded.layers] == [l.kind for l in net.layers]
        assert isinstance(loaded.loss_function, MeanSquaredError)
        assert isinstance(loaded.optimizer, MiniBatch)
        assert loaded.optimizer.learn_rate == 0.05
        assert loaded.metrics == ["accuracy"]
        assert loaded.input_shape == (1, 4, 4)
        assert np.array_equal(net.predict(x), loaded.predict(x))

    def test_load_builds_calling_class(self, tmp_path):
        """Test load on a Sequential subclass returns an instance of that subclass."""
        class TaggedSequential(Sequential):
            pass

        path = tmp_path / "identity.txt"
        path.write_text(IDENTITY_MODEL)
        loaded = TaggedSequential.load(str(path))
        assert type(loaded) is TaggedSequential
        assert loaded.compiled
        assert type(Sequential.load(str(path))) is Sequential

    def test_adam_parameters_survive(self, conv_network):
        """Test the Adam hyper-parameters are restored."""
        loaded = network_from_text(network_to_text(conv_network))
        assert isinstance(loaded.optimizer, Adam)
        assert isinstance(loaded.loss_function, CrossEntropy)
        assert loaded.optimizer.epsilon == conv_network.optimizer.epsilon

    def test_hand_written_model(self):
        """Test a hand-written file loads with the given weights."""
        net = network_from_text(IDENTITY_MODEL)
        assert len(net.layers) == 2
        assert np.allclose(net.predict(np.array([[0.0, 0.0]])), [[0.5, 0.5]])
        assert net.optimizer.learn_rate == 0.5


@pytest.mark.unit
class TestMalformedFiles:
    """Every malformed file is an InvalidNetworkFormatError."""

    def test_unknown_layer_token(self):
        """Test an unrecognized layer names the token."""
        with pytest.raises(InvalidNetworkFormatError, match="foo"):
            network_from_text(model_text("foo -n 3"))

    def test_unknown_option(self):
        """Test an unrecognized flag names the flag."""
        with pytest.raises(InvalidNetworkFormatError, match="-x"):
            network_from_text(model_text("dense -x 3"))

    def test_missing_required_option(self):
        """Test a dense layer without -n is rejected."""
        with pytest.raises(InvalidNetworkFormatError, match="-n"):
            network_from_text(model_text("dense"))

    def test_bad_header(self):
        """Test the first line must declare the input shape."""
        with pytest.raises(InvalidNetworkFormatError):
            network_from_text("Shape: 1 1 3\nrelu\nmeanSquaredError\nmini 0.1\nmetrics:\n")

    def test_missing_loss_line(self):
        """Test a file ending before the loss line is rejected."""
        with pytest.raises(InvalidNetworkFormatError):
            network_from_text("Inshape: 1 1 2\ndense -n 2\n1 0\n0 1\n0 0\n")

    def test_parameter_row_width(self):
        """Test parameter rows must match the layer's parameter width."""
        text = model_text("dense -n 2", "1 2", "3 4", "5 6", "7 8 9")
        with pytest.raises(InvalidNetworkFormatError):
            network_from_text(text)

    def test_unparsable_parameter(self):
        """Test a non-numeric parameter names the token."""
        text = model_text("dense -n 2", "1 2", "3 abc", "5 6", "7 8")
        with pytest.raises(InvalidNetworkFormatError, match="abc"):
            network_from_text(text)

    def test_unknown_optimizer(self):
        """Test an unknown optimizer line is rejected."""
        with pytest.raises(InvalidNetworkFormatError, match="sgd"):
            network_from_text(IDENTITY_MODEL.replace("mini 0.5", "sgd 0.5"))

    def test_bad_metrics_line(self):
        """Test the metrics line must start with 'metrics:'."""
        with pytest.raises(InvalidNetworkFormatError):
            network_from_text(IDENTITY_MODEL.replace("metrics:", "metric: accuracy"))

    def test_unknown_metric(self):
        """Test an unsupported metric is a format error chained to the assembly error."""
        with pytest.raises(InvalidNetworkFormatError) as excinfo:
            network_from_text(IDENTITY_MODEL.replace("metrics:", "metrics: precision"))
        assert isinstance(excinfo.value.__cause__, InvalidOperationError)

    def test_activation_first(self):
        """Test a file starting with an activation layer is rejected."""
        with pytest.raises(InvalidNetworkFormatError) as excinfo:
            network_from_text(model_text("relu"))
        assert isinstance(excinfo.value.__cause__, InvalidOperationError)

    def test_trailing_content(self):
        """Test nothing may follow the metrics line."""
        with pytest.raises(InvalidNetworkFormatError):
            network_from_text(IDENTITY_MODEL + "dense -n 2\n")
