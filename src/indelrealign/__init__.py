"""indelrealign: local realignment of short reads around insertions and deletions.

Reads whose alignments carry indel evidence are clustered into target regions;
each region gets a set of candidate alternate references (from the reads
themselves or from known indel sites) and reads are moved onto the best one
when it beats their current alignment by a log-odds threshold.

Most users should use the CLI:

    indelrealign realign --bam in.bam --out-bam out.bam --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
