"""
test_transfer.py
~~~~~~~~~~~~~~~~

Unit tests for transfer functions and their registry.
"""

import math
import pickle

import pytest

from mlpnet.transfer import (
    TransferFunction,
    Sigmoid,
    HyperbolicTangent,
    Linear,
    get_transfer_function,
    register_transfer_function,
    standardize_transfer_name,
    transfer_function_name
)


@pytest.mark.unit
class TestSigmoid:

    def test_midpoint(self):
        assert Sigmoid().evaluate(0.0) == 0.5

    def test_range(self):
        s = Sigmoid()
        for x in (-5.0, -0.1, 0.1, 5.0):
            assert 0.0 < s.evaluate(x) < 1.0

    def test_symmetry(self):
        s = Sigmoid()
        assert s.evaluate(2.0) + s.evaluate(-2.0) == pytest.approx(1.0)

    def test_large_inputs_do_not_overflow(self):
        """Test that the sigmoid is total over extreme inputs."""
        s = Sigmoid()
        assert s.evaluate(1e6) == 1.0
        assert s.evaluate(-1e6) == 0.0

    def test_derivative_takes_output(self):
        """Test that the derivative is expressed in terms of the output."""
        s = Sigmoid()
        x = 0.3
        y = s.evaluate(x)
        h = 1e-6
        numeric = (s.evaluate(x + h) - s.evaluate(x - h)) / (2 * h)
        assert s.evaluate_derivative(y) == pytest.approx(numeric, rel=1e-6)
        assert s.evaluate_derivative(0.5) == 0.25


@pytest.mark.unit
class TestOtherVariants:

    def test_tanh(self):
        t = HyperbolicTangent()
        assert t.evaluate(0.0) == 0.0
        y = t.evaluate(0.7)
        assert y == pytest.approx(math.tanh(0.7))
        assert t.evaluate_derivative(y) == pytest.approx(1 - math.tanh(0.7) ** 2)

    def test_linear(self):
        lin = Linear()
        assert lin.evaluate(-3.25) == -3.25
        assert lin.evaluate_derivative(123.0) == 1.0

    def test_instances_compare_by_type(self):
        assert Sigmoid() == Sigmoid()
        assert Sigmoid() != Linear()
        assert len({Sigmoid(), Sigmoid(), Linear()}) == 2

    def test_picklable(self):
        assert pickle.loads(pickle.dumps(HyperbolicTangent())) == HyperbolicTangent()


@pytest.mark.unit
class TestRegistry:

    @pytest.mark.parametrize('name,cls', [
        ('sigmoid', Sigmoid),
        ('SIG', Sigmoid),
        ('logistic', Sigmoid),
        ('tanh', HyperbolicTangent),
        ('linear', Linear),
        ('identity', Linear),
    ])
    def test_lookup_by_name(self, name, cls):
        assert isinstance(get_transfer_function(name), cls)

    def test_instance_passes_through(self):
        fn = Linear()
        assert get_transfer_function(fn) is fn

    def test_unknown_name(self):
        with pytest.raises(ValueError) as exc_info:
            get_transfer_function('softsign')
        assert 'softsign' in str(exc_info.value)

    def test_wrong_type(self):
        with pytest.raises(TypeError):
            get_transfer_function(3)

    def test_standardize_name(self):
        assert standardize_transfer_name('Sig') == 'sigmoid'
        assert standardize_transfer_name('tanh') == 'tanh'

    def test_register_custom_function(self):
        """Test that a registered custom function resolves by name."""

        @register_transfer_function
        class Softsign(TransferFunction):
            name = 'test_softsign'

            def evaluate(self, x):
                return x / (1 + abs(x))

            def evaluate_derivative(self, y):
                return (1 - abs(y)) ** 2

        assert isinstance(get_transfer_function('test_softsign'), Softsign)
        assert transfer_function_name(Softsign()) == 'test_softsign'

    def test_register_requires_name(self):
        class Nameless(Linear):
            name = ''

        with pytest.raises(ValueError):
            register_transfer_function(Nameless)

    def test_register_rejects_name_clash(self):
        class OtherSigmoid(Sigmoid):
            pass

        with pytest.raises(ValueError) as exc_info:
            register_transfer_function(OtherSigmoid)
        assert 'already registered' in str(exc_info.value)

    def test_unregistered_subclass_has_no_name(self):
        class Unregistered(Sigmoid):
            pass

        with pytest.raises(ValueError):
            transfer_function_name(Unregistered())
