# gvinsfactors

This package provides the building blocks of a GNSS-visual-inertial
sliding-window estimator, written with NumPy. It contains residual factors, IMU
preintegration (with or without an odometer), and Schur-complement
marginalization.

Every factor is a `CostFunction`. Its `evaluate(parameters, compute_jacobians)`
method returns a tuple `(residuals, jacobians)`. `jacobians` is `None` when you
pass `compute_jacobians=False`. Otherwise it holds one dense array per parameter
block. You can give these results to any nonlinear least-squares solver.

## Modules

### `gvinsfactors.geometry`

- `Quaternion(w, x, y, z)` is a frozen dataclass. Its coefficients are stored in
  the order x, y, z, w.
  - Construction: `Quaternion.identity()` and `Quaternion.from_coeffs(coeffs)`.
  - Accessors: `coeffs()`, `vec()`, `norm()`.
  - Operations: `inverse()`, `conjugate()`, `normalized()`, `to_matrix()` and
    `rotate(v)`.
  - `q * p` multiplies two quaternions. `q * v` rotates a 3-vector (a list,
    tuple or array).
- `skew_symmetric(v)` returns the cross-product matrix of `v`.
- `rotvec_to_quaternion(rotvec)` converts a rotation vector to a quaternion.
- `quaternion_left(q)` and `quaternion_right(q)` return the 4×4 left and right
  multiplication matrices. They use the ordering `[w, x, y, z]`.
- `euler_to_matrix(euler)` takes roll, pitch and yaw, and returns
  `Rz(yaw) Ry(pitch) Rx(roll)`.
- `PoseParameterization` describes a pose with 7 global values and a 6-value
  local update.
  - `plus(x, delta)` adds the position increment directly. It applies the
    rotation increment on the right of the quaternion, then normalizes.
  - `compute_jacobian(x)` returns the 7×6 matrix with an identity top block and
    a zero last row.

### `gvinsfactors.integration_state`

This module holds the data classes `Imu`, `Gnss`, `IntegrationState`,
`IntegrationStateData`, `IntegrationParameters` and `IntegrationConfiguration`.

- Each class checks that its vector fields have the right length.
- `IntegrationState.copy()` returns a deep copy.
- The default attitude of an `IntegrationState` is the zero quaternion. Set
  `q` explicitly, for example to `Quaternion.identity()`.

### `gvinsfactors.residual_block`

- `CostFunction` is the base class. It carries `num_residuals` and
  `parameter_block_sizes`.
- `LossFunction` is a robust kernel. Its `evaluate(sq_norm)` returns
  `(rho, rho', rho'')`. Two kernels are provided: `HuberLoss(a)` and
  `CauchyLoss(a)`.
- `ResidualBlockInfo(cost_function, loss_function, parameter_blocks, marg_para_index)`
  binds a factor to its parameter arrays. Its `evaluate()` stores the residuals
  and Jacobians of the factor in `residuals` and `jacobians`. When a loss
  function is given, it first applies the robust-loss correction to both.

### `gvinsfactors.factors`

- `GnssFactor(gnss, lever)` is the position residual between a pose (with an
  antenna lever arm) and a GNSS fix. Each axis is weighted by `1 / std`.
  `update_gnss_state(gnss)` replaces the fix.
- `ReprojectionFactor(pts0, pts1, vel0, vel1, td0, td1, std)` is the
  inverse-depth reprojection error of a feature seen in two frames. It also
  compensates for the time offset. Its parameter blocks are, in order:
  - the reference pose,
  - the current pose,
  - the camera extrinsic pose,
  - the inverse depth (1 value),
  - the time delay (1 value).

### `gvinsfactors.marginalization`

`MarginalizationInfo` marginalizes parameter blocks out of a set of residual
blocks. Use it in this order:

1. Call `update_parameters_ids(ids)`. It maps `id(array)` of every parameter
   array to a block key.
2. Call `add_residual_block_info(block)` for each residual block that touches a
   block to be marginalized.
3. Call `marginalize()`. It returns `False` and sets `is_valid` to `False` when
   nothing is to be marginalized. Otherwise it computes `linearized_jacobians`
   and `linearized_residuals`.
4. Call `get_parameter_blocks(address)`. It maps block keys to the current
   arrays, records the blocks that remain, and returns their arrays.
5. Build `MarginalizationFactor(info)` from the result. It is the linearized
   prior on the remained blocks.

`MarginalizationInfo.local_size(size)` and `MarginalizationInfo.global_size(size)`
convert between the 7- and 6-value pose sizes.

### `gvinsfactors.preintegration_base`, `preintegration_normal`, `preintegration_odo`

`PreintegrationBase` buffers IMU samples and integrates the navigation state.
It also preintegrates the relative motion, together with its bias Jacobian and
its covariance.

- `add_new_imu(imu)` appends a sample and integrates it.
- `reintegration(state)` starts again from `state` and integrates every
  buffered sample.
- `evaluate(state0, state1)` returns the whitened residual. Call it before the
  `residual_jacobian_pose0/pose1/mix0/mix1` methods, which otherwise raise
  `RuntimeError`.
- `construct_state(parameters)` builds the two states from the blocks pose0,
  mix0, pose1 and mix1.
- `state_to_data` and `state_from_data` convert between states and flat blocks.

There are two models:

| Model | Residual size | Mix block size | Extra content |
|---|---|---|---|
| `PreintegrationNormal` | 15 | 9 | none |
| `PreintegrationOdo` | 19 | 10 | odometer displacement and odometer scale factor |

`PreintegrationOdo` reads its mounting angles from `IntegrationParameters.abv`
and its lever arm from `IntegrationParameters.lodo`.

Both models raise `ValueError` unless `corr_time` is positive.

### `gvinsfactors.preintegration`

- `PreintegrationOptions` has four members: `NORMAL`, `ODO`, `EARTH` and
  `EARTH_ODO`.
- `get_options(config)` picks the option from an `IntegrationConfiguration`.
- `create_preintegration(parameters, imu0, state, options)` creates a
  preintegration of the chosen model.
- `num_pose_parameter()` returns the pose block size.
- `num_mix_parameter(options)` returns the mix block size for an option.
- `state_to_data(state, options)` and `state_from_data(data, options)` convert
  states using the block layout of an option.
- `PreintegrationFactor(preintegration)` wraps a preintegration as a cost
  function over the blocks pose0, mix0, pose1 and mix1.

### `gvinsfactors.imu_factors`

- `ImuErrorFactor(options)` is a soft bound on the biases, and on the odometer
  scale when the option includes the odometer.
- `ImuMixPriorFactor(options, mix, mix_std)` is a prior on the mix block.
- `ImuPosePriorFactor(pose, std)` is a prior on a pose block. It takes six
  standard deviations.

## Conventions

- A pose block is `[px, py, pz, qx, qy, qz, qw]`.
- A mix block holds velocity, gyroscope bias and accelerometer bias. With the
  odometer it also holds the odometer scale factor, for 10 values in total.
- Jacobians have shape `(num_residuals, block_size)`. Pose Jacobians are sized
  for the 7-value block, and their last column is zero.

## Examples

GNSS position factor:

```python
import numpy as np

from gvinsfactors.factors import GnssFactor
from gvinsfactors.integration_state import Gnss

gnss = Gnss(time=0.0, blh=np.array([1.0, 2.0, 3.0]), std=np.array([0.1, 0.1, 0.2]))
factor = GnssFactor(gnss, lever=np.array([0.0, 0.0, 0.5]))

pose = np.array([1.0, 2.0, 2.5, 0.0, 0.0, 0.0, 1.0])
residuals, jacobians = factor.evaluate([pose], compute_jacobians=True)
```

IMU preintegration factor:

```python
import numpy as np

from gvinsfactors.geometry import Quaternion
from gvinsfactors.integration_state import Imu, IntegrationParameters, IntegrationState
from gvinsfactors.preintegration import (
    PreintegrationFactor,
    PreintegrationOptions,
    create_preintegration,
    state_to_data,
)

params = IntegrationParameters(
    gyr_arw=1e-3, acc_vrw=1e-2, gyr_bias_std=1e-4, acc_bias_std=1e-3,
    corr_time=3600.0, gravity=9.8,
)
state0 = IntegrationState(q=Quaternion.identity())
options = PreintegrationOptions.NORMAL

pre = create_preintegration(params, Imu(time=0.0, dt=0.01), state0, options)
for k in range(1, 11):
    pre.add_new_imu(Imu(time=0.01 * k, dt=0.01, dvel=[0.0, 0.0, -0.098]))

d0 = state_to_data(state0, options)
d1 = state_to_data(pre.current_state, options)
factor = PreintegrationFactor(pre)
residuals, jacobians = factor.evaluate(
    [d0.pose, d0.mix[:9], d1.pose, d1.mix[:9]]
)
```

## What the package does not do

- The Earth-rotation models are not available. `PreintegrationOptions.EARTH`
  and `PreintegrationOptions.EARTH_ODO` are recognized by `get_options`,
  `num_mix_parameter`, `state_to_data` and `state_from_data`. However,
  `create_preintegration` raises `ValueError` for them.
- There is no solver, and no front end for images or GNSS data. You supply
  parameter arrays and optimize them with a least-squares solver of your
  choice.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```