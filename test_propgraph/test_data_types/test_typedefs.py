from unittest import TestCase

from propgraph.data_types import typedefs


class TestDirection(TestCase):

    def test_covers(self):
        self.assertTrue(typedefs.Direction.BOTH.covers(typedefs.Direction.OUT))
        self.assertTrue(typedefs.Direction.BOTH.covers(typedefs.Direction.IN))
        self.assertTrue(typedefs.Direction.OUT.covers(typedefs.Direction.OUT))
        self.assertFalse(typedefs.Direction.OUT.covers(typedefs.Direction.IN))
        self.assertFalse(typedefs.Direction.IN.covers(typedefs.Direction.BOTH))


class TestIndexStatus(TestCase):

    def test_order(self):
        statuses = list(typedefs.IndexStatus)
        self.assertEqual(statuses, sorted(statuses, key=lambda status: status.rank))
        self.assertTrue(typedefs.IndexStatus.ENABLED.at_or_past(typedefs.IndexStatus.REGISTERED))
        self.assertTrue(typedefs.IndexStatus.REGISTERED.at_or_past(typedefs.IndexStatus.REGISTERED))
        self.assertFalse(typedefs.IndexStatus.INSTALLED.at_or_past(
            typedefs.IndexStatus.REGISTERED))

    def test_maintained(self):
        maintained = {status for status in typedefs.IndexStatus if status.maintained}
        self.assertEqual({typedefs.IndexStatus.REGISTERED, typedefs.IndexStatus.REINDEXING,
                          typedefs.IndexStatus.ENABLED}, maintained)


class TestMultiplicity(TestCase):

    def test_uniqueness(self):
        self.assertTrue(typedefs.Multiplicity.MANY2ONE.unique_out)
        self.assertFalse(typedefs.Multiplicity.MANY2ONE.unique_in)
        self.assertTrue(typedefs.Multiplicity.ONE2MANY.unique_in)
        self.assertTrue(typedefs.Multiplicity.ONE2ONE.unique_in)
        self.assertTrue(typedefs.Multiplicity.ONE2ONE.unique_out)
        self.assertFalse(typedefs.Multiplicity.MULTI.unique_out)
        self.assertFalse(typedefs.Multiplicity.SIMPLE.unique_in)


class TestValues(TestCase):

    def test_infer_data_type(self):
        self.assertIs(bool, typedefs.infer_data_type(True))
        self.assertIs(int, typedefs.infer_data_type(3))
        self.assertIs(float, typedefs.infer_data_type(3.5))
        self.assertIs(str, typedefs.infer_data_type('three'))
        with self.assertRaises(TypeError):
            typedefs.infer_data_type([3])

    def test_coerce_value(self):
        self.assertEqual(3.0, typedefs.coerce_value(float, 3))
        self.assertIsInstance(typedefs.coerce_value(float, 3), float)
        self.assertEqual('x', typedefs.coerce_value(str, 'x'))
        self.assertIs(False, typedefs.coerce_value(bool, False))
        with self.assertRaises(TypeError):
            typedefs.coerce_value(int, True)
        with self.assertRaises(TypeError):
            typedefs.coerce_value(int, '3')
        with self.assertRaises(TypeError):
            typedefs.coerce_value(bool, 1)
        with self.assertRaises(TypeError):
            typedefs.coerce_value(str, 1)

    def test_cardinality(self):
        self.assertFalse(typedefs.Cardinality.SINGLE.multi_valued)
        self.assertTrue(typedefs.Cardinality.SET.multi_valued)
        self.assertTrue(typedefs.Cardinality.LIST.multi_valued)
