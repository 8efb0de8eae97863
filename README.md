# loccorr

`loccorr` finds star images on 8-bit grey frames, measures their centroids
and keeps track of where the chosen star sits relative to a target point.
It is a Python library: the steps of the pipeline are plain functions and
classes that can be used on their own or together.

## Modules

- `loccorr.config`: `Configuration` holds the run-time parameters.
  `Configuration.load(path)` reads a `key = value` file (lines starting with
  `#` or `%` are comments), range-checks every value and returns how many
  distinct parameters were set; a repeated parameter raises `ConfigError`.
  `Configuration.apply(key, value)` sets one parameter with the same checks,
  `Configuration.save(path)` writes all of them and
  `Configuration.as_json(messageid)` returns them as one JSON line.
  `get_cmd_list()` lists every parameter with its help text and range;
  `get_keyval` and `chk_keyval` are the line splitter and checker used
  when loading.
- `loccorr.image`: the `Image` type (a 2-D `numpy.uint8` array with
  `minval`, `maxval` and FITS header records in `keylist`), `image_new`
  and the `InputType` enumeration.
- `loccorr.imagefile`: `chkinput` (tells a camera name, a directory or an
  image file type from the file signature), `image_read` (FITS, gzipped
  FITS, JPEG, PNG, GIF, BMP), `u8_to_image`, `get_histogram`,
  `calc_background`, `linear` and `equalize` (conversion for output, 1 or
  3 channels), `image_write_jpg`, and conversion between images and packed
  binary images (`image_to_bin`, `bin_to_image`, `bin_to_labels`). Errors
  are raised as `ImageError`.
- `loccorr.fits`: `read_fits` reads the primary image of a FITS file,
  scaling its values to 0..255 and collecting the header records of every
  HDU; `write_fits` writes a 16-bit FITS file and refuses to overwrite an
  existing one. Errors are raised as `FitsError`.
- `loccorr.binmorph`: morphology on packed binary images: `erosion`,
  `dilation`, `erosion_n`, `dilation_n`, `opening_n`, `closing_n`,
  `top_hat`, `bot_hat`, `filter4` and `filter8` (removal of pixels without
  4- or 8-connected neighbours), and `cclabel4`, which labels 4-connected
  components and returns a `ConnComps` with a label array and one `Box`
  per component.
- `loccorr.draw`: `Img3` (3-channel image), `Pattern`,
  `pattern_cross`, `pattern_xcross` and `Pattern.draw3` to blend a pattern
  in a given colour (`C_R`, `C_G`, `C_B`, `C_K`, `C_W`).
- `loccorr.improc`: `find_objects` detects and measures objects passing
  the area and roundness limits (`StarObject`), `sort_objects` orders them
  by distance from the target or by intensity. `Processor` handles one
  frame at a time: `process_file` finds the objects, averages the chosen
  star's position over `naverage` frames, passes the average to an optional
  corrector callable, optionally logs XY coordinates (`open_xy_log`,
  `close_xy_log`) and writes an annotated JPEG with crosses at the target
  and at the objects. `center`, `frames_per_second` and `local_status`
  report on it.
- `loccorr.cameracapture`: `Camera` is the abstract interface a camera
  driver implements; `CameraCapture` fits the configured frame geometry to
  the camera limits (`change_format`), adjusts exposure and gain from the
  histogram (`recalc_exp`, `calc_exp_gain`), runs `capture_loop` until
  `stop()` is called, and reports its state as JSON (`status`).
- `loccorr.cmdlnopts`: `parse_args` parses command-line options into a
  `GlobalParams` dataclass.

Packed binary images store eight pixels per byte, most significant bit
first, one row after another; images narrower than 9 pixels or lower than
3 rows are too small for the morphological operations.

## Installation

Install with pip into an environment with Python 3.10 or newer; the
package depends on `numpy` and `pillow`. The `test` extra adds `pytest`.

## Example

```python
from loccorr.config import Configuration
from loccorr.imagefile import image_read, calc_background, image_to_bin
from loccorr.binmorph import erosion_n, dilation_n, cclabel4
from loccorr.improc import Processor, find_objects, sort_objects

conf = Configuration()
conf.load("loccorr.conf")          # optional

image = image_read("frame.fits")
for star in sort_objects(find_objects(image, conf), conf):
    print(star.xc, star.yc, star.isum)

# the lower-level steps
bk = calc_background(image, conf)
binary = image_to_bin(image, bk)
opened = dilation_n(
    erosion_n(binary, image.width, image.height, conf.nerosions),
    image.width, image.height, conf.ndilations,
)
comps = cclabel4(opened, image.width, image.height)
print(comps.nobj, comps.boxes[:3])

# frame-by-frame processing with an annotated JPEG
with Processor(conf, "out.jpg", corrector=lambda x, y: print("avg", x, y)) as proc:
    proc.process_file(image)
    print(proc.center(), proc.local_status("1", isdir=False))
```

Parameters can be changed one at a time with the same checks as the file:

```python
conf.apply("naverage", "10")
print(conf.as_json("example"))
conf.save("loccorr.conf")
```

## What it does not do

- There is no command to run: `parse_args` only turns options into
  `GlobalParams`, and nothing starts a processing run from them.
- No camera drivers are included. `CameraCapture` works with any object
  implementing `Camera`, which you have to supply.
- There is no median filter; `CameraCapture` accepts one as a callable.
- Files and directories are not watched for new images; call
  `Processor.process_file` on each image yourself.
- No stepper-motor or other drive control is included; corrections reach
  the outside only through the corrector callable given to `Processor`.
- There is no network server for status or commands; the JSON status
  strings are returned for you to send wherever needed.